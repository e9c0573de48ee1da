# clinic_scheduler/dependencies.py
# Request-scoped collaborators. Tests replace these via app.dependency_overrides.
from datetime import datetime

from .services.notification_service import NotificationService, get_notification_service
from .timeutils import utcnow


def get_now() -> datetime:
    """The single place the API reads the wall clock."""
    return utcnow()


def get_notifier() -> NotificationService:
    return get_notification_service()
