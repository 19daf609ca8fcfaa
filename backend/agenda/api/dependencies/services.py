# backend/agenda/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. External clients are
process-wide singletons; services are built per request around the
request's database session.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...integrations.catalog_client import CatalogProvider, build_catalog_client
from ...integrations.customer_client import CustomerStore, build_customer_client
from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.notification_service import NotificationService
from ...services.schedule_admin_service import ScheduleAdminService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _catalog_singleton() -> CatalogProvider:
    return build_catalog_client()


@lru_cache(maxsize=1)
def _customer_store_singleton() -> CustomerStore:
    return build_customer_client()


def get_catalog_client() -> CatalogProvider:
    """Catalog client for dependency injection."""
    return _catalog_singleton()


def get_customer_store() -> CustomerStore:
    """Customer/loyalty store client for dependency injection."""
    return _customer_store_singleton()


def get_availability_service(
    db: Session = Depends(get_db),
    catalog: CatalogProvider = Depends(get_catalog_client),
) -> AvailabilityService:
    return AvailabilityService(db, catalog)


def get_notification_service(
    db: Session = Depends(get_db),
    catalog: CatalogProvider = Depends(get_catalog_client),
) -> NotificationService:
    return NotificationService(db, catalog)


def get_booking_service(
    db: Session = Depends(get_db),
    catalog: CatalogProvider = Depends(get_catalog_client),
    customers: CustomerStore = Depends(get_customer_store),
    notification_service: NotificationService = Depends(get_notification_service),
) -> BookingService:
    """
    Get booking service instance.

    Args:
        db: Database session
        catalog: Catalog client for service definitions and prices
        customers: Customer store for loyalty points
        notification_service: Queues confirmations and reminders

    Returns:
        BookingService instance
    """
    return BookingService(
        db,
        catalog,
        customers=customers,
        notification_service=notification_service,
    )


def get_schedule_admin_service(db: Session = Depends(get_db)) -> ScheduleAdminService:
    return ScheduleAdminService(db)
