# backend/agenda/tasks/notification_tasks.py
"""
Celery tasks for delivering queued appointment messages.

`jobs.dispatch_due` drains due rows from background_jobs:
- ``send-message``: deliver a prepared text, then record the event it stands for
- ``appointment-reminder``: compose and deliver the reminder for a booking

Temporary gateway failures are requeued with backoff by the job repository.
A message the gateway refuses outright is not retried.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from time import monotonic
from typing import Any, Iterator, List, Optional

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from agenda.core.config import settings
from agenda.core.timezone_utils import ensure_utc, utc_now
from agenda.database import SessionLocal
from agenda.events import APPOINTMENT_REMINDER_JOB, SEND_MESSAGE_JOB
from agenda.integrations.catalog_client import CatalogProvider, build_catalog_client
from agenda.integrations.message_gateway import (
    MessageGatewayTemporaryError,
    MessageSender,
    build_message_gateway,
)
from agenda.models.appointment import Appointment, AppointmentEventType
from agenda.models.background_job import BackgroundJob
from agenda.monitoring.prometheus_metrics import PrometheusMetrics
from agenda.repositories.factory import RepositoryFactory
from agenda.services.notification_service import NotificationService
from agenda.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@contextmanager
def _session_scope() -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@dataclass
class DispatchSummary:
    succeeded: int = 0
    skipped: int = 0
    retried: int = 0

    @property
    def processed(self) -> int:
        return self.succeeded + self.skipped + self.retried


class _Skip(Exception):
    """Job no longer applies; finish it without delivering."""


class JobDispatcher:
    """Runs due background jobs against a message sender."""

    def __init__(
        self,
        session: Session,
        sender: MessageSender,
        catalog: Optional[CatalogProvider] = None,
        notification_service: Optional[NotificationService] = None,
    ):
        self.session = session
        self.sender = sender
        self.jobs = RepositoryFactory.create_background_job_repository(session)
        self.appointments = RepositoryFactory.create_appointment_repository(session)
        self.notification_service = notification_service or NotificationService(session, catalog)

    def run_due(self, *, limit: int, now: Optional[datetime] = None) -> DispatchSummary:
        summary = DispatchSummary()
        jobs = self.jobs.fetch_due(limit=limit, now=now or utc_now())
        for job in jobs:
            outcome = self._run_one(job)
            setattr(summary, outcome, getattr(summary, outcome) + 1)
        return summary

    def _run_one(self, job: BackgroundJob) -> str:
        job_id, job_type = job.id, job.type
        start = monotonic()
        self.jobs.mark_running(job_id)
        self.session.flush()
        try:
            if job_type == SEND_MESSAGE_JOB:
                self._deliver_message(job.payload or {})
            elif job_type == APPOINTMENT_REMINDER_JOB:
                self._deliver_reminder(job.payload or {})
            else:
                raise _Skip(f"unknown job type {job_type}")
        except _Skip as skip:
            logger.info("Skipping job %s (%s): %s", job_id, job_type, skip)
            self.jobs.mark_skipped(job_id)
            self.session.commit()
            PrometheusMetrics.record_notification_outcome(job_type, "skipped")
            return "skipped"
        except MessageGatewayTemporaryError as exc:
            self.session.rollback()
            self.jobs.mark_failed(job_id, str(exc))
            self.session.commit()
            PrometheusMetrics.record_notification_outcome(job_type, "retry")
            logger.warning("Job %s (%s) will be retried: %s", job_id, job_type, exc)
            return "retried"
        except Exception as exc:
            self.session.rollback()
            self.jobs.mark_failed(job_id, f"{type(exc).__name__}: {exc}")
            self.session.commit()
            PrometheusMetrics.record_notification_outcome(job_type, "error")
            logger.exception("Job %s (%s) failed", job_id, job_type)
            return "retried"
        finally:
            PrometheusMetrics.observe_notification_dispatch(job_type, monotonic() - start)

        self.jobs.mark_succeeded(job_id)
        self.session.commit()
        PrometheusMetrics.record_notification_outcome(job_type, "sent")
        return "succeeded"

    def _already_recorded(self, appointment_id: Optional[str], event_type: Optional[str]) -> bool:
        return bool(
            appointment_id and event_type and self.appointments.has_event(appointment_id, event_type)
        )

    def _deliver_message(self, payload: dict[str, Any]) -> None:
        phone = payload.get("phone")
        message = payload.get("message")
        if not phone or not message:
            raise _Skip("payload has no phone or message")
        appointment_id = payload.get("appointment_id")
        event_type = payload.get("event_type")
        if self._already_recorded(appointment_id, event_type):
            raise _Skip(f"{event_type} already recorded for {appointment_id}")

        result = self.sender.send(
            phone,
            message,
            location=payload.get("location"),
            attachment=payload.get("attachment"),
        )
        if not result.success:
            raise _Skip(f"gateway refused message: {result.reason}")

        if appointment_id and event_type:
            self.appointments.add_event(appointment_id, event_type)
            logger.info("%s delivered for appointment %s", event_type, appointment_id)

    def _batch_of(self, appointment: Appointment) -> List[Appointment]:
        if not appointment.batch_id:
            return [appointment]
        siblings = self.appointments.find_by(batch_id=appointment.batch_id)
        booked = [a for a in siblings if a.is_booked]
        return sorted(booked or [appointment], key=lambda a: ensure_utc(a.start_at))

    def _deliver_reminder(self, payload: dict[str, Any]) -> None:
        appointment_id = payload.get("appointment_id")
        if not appointment_id:
            raise _Skip("payload has no appointment_id")
        appointment = self.appointments.get_by_id(appointment_id)
        if appointment is None or not appointment.is_booked:
            raise _Skip(f"appointment {appointment_id} is no longer booked")
        scheduled_for = payload.get("start_at")
        current_start = ensure_utc(appointment.start_at)
        if scheduled_for and datetime.fromisoformat(scheduled_for) != current_start:
            raise _Skip(f"appointment {appointment_id} was moved after the reminder was queued")
        event_type = AppointmentEventType.REMINDER_SENT.value
        if self._already_recorded(appointment_id, event_type):
            raise _Skip("reminder already sent")

        message = self.notification_service.compose_reminder(self._batch_of(appointment))
        if message is None:
            raise _Skip("no reminder template configured")

        result = self.sender.send(appointment.customer_phone, message)
        if not result.success:
            raise _Skip(f"gateway refused reminder: {result.reason}")
        self.appointments.add_event(appointment_id, event_type)
        logger.info("Reminder sent for appointment %s", appointment_id)


@celery_app.task(name="jobs.dispatch_due", max_retries=0, queue="notifications")
def dispatch_due(limit: Optional[int] = None) -> int:
    """
    Deliver every job that is due now.

    Returns the number of jobs processed.
    """
    with _session_scope() as session:
        dispatcher = JobDispatcher(
            session,
            sender=build_message_gateway(),
            catalog=build_catalog_client(),
        )
        summary = dispatcher.run_due(limit=limit or settings.jobs_batch)
    if summary.processed:
        logger.info(
            "Dispatched %s jobs (%s sent, %s skipped, %s retried)",
            summary.processed,
            summary.succeeded,
            summary.skipped,
            summary.retried,
        )
    return summary.processed
