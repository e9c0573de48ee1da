# clinic_scheduler/services/notification_service.py
"""Notification collaborator.

The scheduling core only decides *that* an event must reach a patient; this
module renders the message and hands it to SendGrid or Twilio. Blocking SDK
calls run in a worker thread.
"""
import asyncio
import enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import jinja2
import structlog
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from .. import models
from ..config import Settings, get_settings
from ..errors import NotificationError
from ..timeutils import ensure_utc

logger = structlog.get_logger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "notifications"


class NotificationEvent(str, enum.Enum):
    confirmation = "confirmation"
    reminder = "reminder"
    cancellation = "cancellation"
    status_change = "status_change"
    reschedule = "reschedule"

SUBJECTS = {
    NotificationEvent.confirmation: "Appointment booked - {appointment_id}",
    NotificationEvent.reminder: "Reminder: upcoming appointment {appointment_id}",
    NotificationEvent.cancellation: "Appointment cancelled - {appointment_id}",
    NotificationEvent.status_change: "Appointment update - {appointment_id}",
    NotificationEvent.reschedule: "Appointment rescheduled - {appointment_id}",
}

DOCTOR_COPY_EVENTS = (NotificationEvent.confirmation, NotificationEvent.cancellation)


class NotificationService:
    """Delivers one event about one appointment over the patient's preferred channel."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.template_env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.template_env.filters["localtime"] = self._localtime

        self.sg = SendGridAPIClient(api_key=self.settings.sendgrid_api_key) if self.settings.email_enabled else None
        if self.settings.twilio_account_sid and self.settings.twilio_auth_token:
            self.twilio = Client(self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        else:
            self.twilio = None

        if not (self.sg or self.twilio):
            logger.warning("notifications_simulated", detail="No SendGrid or Twilio credentials configured")

    @property
    def simulated(self) -> bool:
        return self.sg is None and self.twilio is None

    def _localtime(self, value, fmt: str = "%A, %d %B %Y at %I:%M %p"):
        if value is None:
            return ""
        return ensure_utc(value).astimezone(self.settings.clinic_tz).strftime(fmt)

    def render(self, event: NotificationEvent, context: Dict[str, Any]) -> tuple:
        template = self.template_env.get_template(f"{event.value}.txt")
        subject = SUBJECTS[event].format(appointment_id=context["appointment"].appointment_id)
        return subject, template.render(**context).strip()

    def channels_for(self, patient: models.Patient) -> List[str]:
        """Preferred channel first, email as a fallback when an address is on file."""
        method = patient.communication_method
        channels = []
        if method == models.CommunicationType.whatsapp and (patient.whatsapp_number or patient.phone_number):
            channels.append("whatsapp")
        elif method in (models.CommunicationType.sms, models.CommunicationType.phone) and patient.phone_number:
            channels.append("sms")
        if patient.email:
            channels.append("email")
        return channels

    async def deliver(
        self,
        event: NotificationEvent,
        appointment: models.Appointment,
        patient: models.Patient,
        doctor: Optional[models.Doctor] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[str]:
        """Returns the channels that accepted the message.

        Raises NotificationError when none did.
        """
        event = NotificationEvent(event)
        render_context = {
            "event": event.value,
            "appointment": appointment,
            "patient": patient,
            "doctor": doctor,
            **(context or {}),
        }
        subject, body = self.render(event, render_context)

        if self.simulated:
            logger.info("notification_simulated", notification_event=event.value,
                        appointment_id=appointment.appointment_id, body=body)
            return ["simulated"]

        delivered = []
        for channel in self.channels_for(patient):
            try:
                if channel == "email":
                    ok = await self.send_email(patient.email, subject, body)
                elif channel == "sms":
                    ok = await self.send_sms(patient.phone_number, body)
                else:
                    ok = await self.send_whatsapp(patient.whatsapp_number or patient.phone_number, body)
            except TwilioRestException as e:
                logger.warning("notification_channel_failed", channel=channel,
                               appointment_id=appointment.appointment_id, error=f"{e.status} - {e.msg}")
                ok = False
            except Exception as e:
                logger.warning("notification_channel_failed", channel=channel,
                               appointment_id=appointment.appointment_id, error=str(e))
                ok = False
            if ok:
                delivered.append(channel)

        if self.settings.notify_doctors and doctor is not None and doctor.email and event in DOCTOR_COPY_EVENTS:
            try:
                await self.send_email(doctor.email, f"[Doctor copy] {subject}", body)
            except Exception as e:
                logger.warning("doctor_copy_failed", appointment_id=appointment.appointment_id, error=str(e))

        if not delivered:
            raise NotificationError(
                f"No channel delivered {event.value} for appointment {appointment.appointment_id}"
            )
        logger.info("notification_delivered", notification_event=event.value,
                    appointment_id=appointment.appointment_id, channels=delivered)
        return delivered

    async def send_email(self, to_email: str, subject: str, body: str) -> bool:
        if self.sg is None:
            return False
        mail = Mail(
            from_email=self.settings.sender_email,
            to_emails=to_email,
            subject=subject,
            plain_text_content=body,
        )
        response = await asyncio.to_thread(self.sg.send, mail)
        return 200 <= response.status_code < 300

    async def send_sms(self, phone_number: str, body: str) -> bool:
        if self.twilio is None or not self.settings.sms_enabled:
            return False
        message = await asyncio.to_thread(
            self.twilio.messages.create,
            body=body,
            from_=self.settings.twilio_sms_from,
            to=phone_number,
        )
        return bool(message.sid)

    async def send_whatsapp(self, phone_number: str, body: str) -> bool:
        if self.twilio is None or not self.settings.whatsapp_enabled:
            return False
        to_number = phone_number if phone_number.startswith("whatsapp:") else f"whatsapp:{phone_number}"
        from_number = self.settings.twilio_whatsapp_from
        if not from_number.startswith("whatsapp:"):
            from_number = f"whatsapp:{from_number}"
        message = await asyncio.to_thread(
            self.twilio.messages.create,
            body=body,
            from_=from_number,
            to=to_number,
        )
        return bool(message.sid)


_notification_service: Optional[NotificationService] = None

def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
