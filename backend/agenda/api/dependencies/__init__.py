# backend/agenda/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import require_staff
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_service,
    get_catalog_client,
    get_customer_store,
    get_notification_service,
    get_schedule_admin_service,
)

__all__ = [
    # Auth
    "require_staff",
    # Database
    "get_db",
    # Collaborators
    "get_catalog_client",
    "get_customer_store",
    # Services
    "get_availability_service",
    "get_booking_service",
    "get_notification_service",
    "get_schedule_admin_service",
]
