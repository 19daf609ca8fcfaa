# backend/agenda/services/notification_service.py
"""
Notification Service for the Agenda platform

Composes customer messages from the templates kept in the catalog and queues
them as background jobs. Nothing here talks to the message gateway directly;
delivery happens in the Celery dispatcher.

Templates support the placeholders {{name}}, {{services}}, {{date}}
(dd/mm/YYYY) and {{time}} (HH:MM), rendered in the business timezone.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Optional, Sequence

from jinja2 import DebugUndefined, Environment, TemplateError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ExternalDependencyException
from ..core.timezone_utils import format_local_date, format_local_time, utc_now
from ..core.ttl_cache import TimeBoxedCache
from ..events import AppointmentReminderDue, EventPublisher, SendMessage
from ..integrations.catalog_client import CatalogProvider
from ..models.appointment import Appointment, AppointmentEventType, as_utc
from ..repositories.factory import RepositoryFactory
from ..schemas.catalog import NotificationSettings
from .base import BaseService

logger = logging.getLogger(__name__)

_SETTINGS_KEY = "notification-settings"
# Plain-text messages: no HTML escaping, unknown names render back as placeholders
_env = Environment(autoescape=False, undefined=DebugUndefined, keep_trailing_newline=True)

# Shared across service instances; services are built per request
_template_cache: TimeBoxedCache[NotificationSettings] = TimeBoxedCache(
    settings.template_cache_ttl_seconds
)


def render_template(template: str, values: Dict[str, str]) -> str:
    """
    Render a catalog message template.

    Unknown placeholders are kept in the output as ``{{ name }}``. A template
    Jinja2 cannot parse is a catalog content problem and raises
    ExternalDependencyException.
    """
    try:
        return _env.from_string(template).render(values)
    except TemplateError as e:
        logger.error(f"Error rendering message template: {str(e)}")
        raise ExternalDependencyException(
            "catalog", "Notification template could not be rendered", details={"error": str(e)}
        )


def template_values(
    customer_name: str, service_names: Sequence[str], start_at: datetime, tz_name: Optional[str] = None
) -> Dict[str, str]:
    return {
        "name": customer_name,
        "services": ", ".join(service_names),
        "date": format_local_date(start_at, tz_name),
        "time": format_local_time(start_at, tz_name),
    }


class NotificationService(BaseService):
    """Builds confirmation and reminder messages and schedules their delivery."""

    def __init__(
        self,
        db: Session,
        catalog: Optional[CatalogProvider] = None,
        template_cache: Optional[TimeBoxedCache[NotificationSettings]] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.catalog = catalog
        self.template_cache = template_cache if template_cache is not None else _template_cache
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_background_job_repository(db)
        )

    def get_notification_settings(self) -> NotificationSettings:
        """Templates from the catalog, reused until the cache TTL elapses."""
        if self.catalog is None:
            return NotificationSettings()
        catalog = self.catalog

        def _load() -> NotificationSettings:
            return catalog.get_notification_settings() or NotificationSettings()

        return self.template_cache.get_or_load(_SETTINGS_KEY, _load)

    @staticmethod
    def _location() -> Optional[Dict[str, Any]]:
        if not settings.business_location:
            return None
        return {"address": settings.business_location}

    def compose_confirmation(self, appointments: Sequence[Appointment]) -> Optional[str]:
        """Confirmation text for a booking (one or several chained services), or None."""
        if not appointments:
            return None
        template = self.get_notification_settings().confirmation_message_template
        if not template:
            return None
        first = appointments[0]
        return render_template(
            template,
            template_values(
                first.customer_name,
                [a.service_name for a in appointments],
                as_utc(first.start_at),
            ),
        )

    def compose_reminder(self, appointments: Sequence[Appointment]) -> Optional[str]:
        if not appointments:
            return None
        template = self.get_notification_settings().reminder_message_template
        if not template:
            return None
        first = appointments[0]
        return render_template(
            template,
            template_values(
                first.customer_name,
                [a.service_name for a in appointments],
                as_utc(first.start_at),
            ),
        )

    def enqueue(
        self,
        phone: str,
        message: str,
        *,
        location: Optional[Dict[str, Any]] = None,
        attachment: Optional[Dict[str, Any]] = None,
        appointment_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> str:
        """Queue a message for delivery; returns the job id. Caller commits."""
        return self.publisher.publish(
            SendMessage(
                phone=phone,
                message=message,
                appointment_id=appointment_id,
                event_type=event_type,
                location=location,
                attachment=attachment,
            )
        )

    @BaseService.measure_operation("queue_confirmation")
    def queue_confirmation(self, appointments: Sequence[Appointment]) -> Optional[str]:
        """
        Queue the booking confirmation.

        Returns None when no confirmation template is configured. The
        CONFIRMATION_SENT event is recorded on the first appointment once the
        gateway accepts the message.
        """
        message = self.compose_confirmation(appointments)
        if message is None:
            self.logger.info("No confirmation template configured, skipping")
            return None
        first = appointments[0]
        with self.transaction():
            job_id = self.enqueue(
                first.customer_phone,
                message,
                location=self._location(),
                appointment_id=first.id,
                event_type=AppointmentEventType.CONFIRMATION_SENT.value,
            )
        return job_id

    @BaseService.measure_operation("schedule_reminder")
    def schedule_reminder(
        self, appointment: Appointment, now: Optional[datetime] = None
    ) -> Optional[str]:
        """
        Queue a reminder at start minus the configured lead time.

        Nothing is scheduled when that instant has already passed.
        """
        remind_at = as_utc(appointment.start_at) - timedelta(hours=settings.reminder_lead_hours)
        if remind_at <= (now or utc_now()):
            return None
        with self.transaction():
            job_id = self.publisher.publish(
                AppointmentReminderDue(
                    appointment_id=appointment.id, start_at=as_utc(appointment.start_at)
                ),
                not_before=remind_at,
            )
        self.logger.info(
            "Reminder scheduled",
            extra={"appointment_id": appointment.id, "remind_at": remind_at.isoformat()},
        )
        return job_id
