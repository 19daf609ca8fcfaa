# backend/agenda/tasks/celery_app.py
"""
Celery application configuration for the Agenda platform.

Redis is the broker. The only periodic work is draining the persisted
background_jobs table, which the beat schedule triggers every
``jobs_poll_interval_seconds``.
"""

from typing import Any

from celery import Celery
from celery.signals import setup_logging

from agenda.core.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = settings.celery_broker_url
    # Ensure Redis URL includes database number
    if broker_url.startswith("redis") and not any(
        broker_url.endswith(f"/{i}") for i in range(16)
    ):
        broker_url = f"{broker_url}/0"

    celery_app = Celery("agenda", broker=broker_url)

    celery_app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": settings.timezone,
            "enable_utc": True,
            "task_ignore_result": True,
            "worker_prefetch_multiplier": 1,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_soft_time_limit": 120,
            "task_time_limit": 300,
            "worker_hijack_root_logger": False,
            "broker_transport_options": {"visibility_timeout": 3600},
        }
    )

    # Force import so the task is registered even when autodiscovery is skipped
    celery_app.conf.imports = ("agenda.tasks.notification_tasks",)
    celery_app.conf.task_routes = {"jobs.*": {"queue": "notifications"}}
    celery_app.conf.beat_schedule = {
        "dispatch-due-jobs": {
            "task": "jobs.dispatch_due",
            "schedule": float(settings.jobs_poll_interval_seconds),
            "options": {"queue": "notifications"},
        },
    }
    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    import logging

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()
