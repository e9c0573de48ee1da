import uvicorn
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from clinic_scheduler.config import get_settings
from clinic_scheduler.core.logging import setup_logging
from clinic_scheduler.database import create_tables
from clinic_scheduler.errors import SchedulingError
from clinic_scheduler.limiter import limiter
from clinic_scheduler.routers import appointments, health, reminders, schedule, slots, unavailable_dates

setup_logging()
logger = structlog.get_logger(__name__)
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    docs_url=None if settings.is_production else "/docs",
)

@app.on_event("startup")
def on_startup():
    create_tables()
    logger.info("startup_complete", environment=settings.environment, timezone=settings.clinic_timezone)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    logger.info("request_rejected", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)

app.include_router(schedule.router, prefix="/api/v1")
app.include_router(unavailable_dates.router, prefix="/api/v1")
app.include_router(slots.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(reminders.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


if __name__ == "__main__":
    uvicorn.run("clinic_scheduler.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
