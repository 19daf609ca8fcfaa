# backend/agenda/services/conflict_checker.py
"""
Conflict Checker Service for the Agenda platform

Decides whether a booking request may be written. Checks run in a fixed
order and the first failure wins:

1. start must be strictly in the future
2. every service must resolve to a positive catalog duration
3. the combined interval must not overlap a BOOKED appointment
4. the civil date must not be blocked
5. the start must sit on the slot grid for the combined duration

The checker reads a snapshot at call time and takes no locks; the booking
service wraps it in the day lock when it is about to write.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.exceptions import (
    DATE_BLOCKED,
    SLOT_NOT_ALIGNED,
    SLOT_UNAVAILABLE,
    BookingConflictException,
    ValidationException,
)
from ..core.timezone_utils import civil_date_of, ensure_utc, format_local_time, utc_now
from ..domain.slots import find_slot
from ..integrations.catalog_client import CatalogProvider
from ..repositories.factory import RepositoryFactory
from ..schemas.catalog import CatalogService
from .availability_service import AvailabilityService
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class ServiceSegment:
    """One service's share of a (possibly chained) booking."""

    service: CatalogService
    start_at: datetime
    end_at: datetime
    price: Decimal


@dataclass
class ValidationResult:
    start_at: datetime
    end_at: datetime
    civil_date: date
    total_minutes: int
    segments: List[ServiceSegment] = field(default_factory=list)
    source: str = ""


class ConflictChecker(BaseService):
    """
    Service for checking booking conflicts and slot alignment.

    This service centralizes all conflict detection logic so the public
    availability listing and the booking path cannot disagree.
    """

    def __init__(
        self,
        db: Session,
        catalog: CatalogProvider,
        availability_service: Optional[AvailabilityService] = None,
    ):
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.catalog = catalog
        self.availability_service = availability_service or AvailabilityService(db, catalog)
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)
        self.blocked_date_repository = RepositoryFactory.create_blocked_date_repository(db)

    def resolve_services(self, service_ids: Sequence[str]) -> List[CatalogService]:
        """
        Catalog entries for each id, in order.

        Raises ValidationException for an empty request; catalog lookups raise
        NotFoundException, ValidationException or ExternalDependencyException.
        """
        if not service_ids:
            raise ValidationException("At least one service is required")
        services = [self.catalog.get_service(service_id) for service_id in service_ids]
        for service in services:
            if service.duration_minutes <= 0:
                raise ValidationException(
                    f"Service {service.id} has no valid duration",
                    code="INVALID_SERVICE_DEFINITION",
                )
        return services

    @staticmethod
    def chain_segments(
        services: Sequence[CatalogService],
        start_at: datetime,
        prices: Optional[Sequence[Decimal]] = None,
    ) -> List[ServiceSegment]:
        """Place services back-to-back from ``start_at`` in caller order."""
        segments: List[ServiceSegment] = []
        cursor = ensure_utc(start_at)
        for index, service in enumerate(services):
            end = cursor + timedelta(minutes=service.duration_minutes)
            price = prices[index] if prices is not None else service.price
            segments.append(ServiceSegment(service=service, start_at=cursor, end_at=end, price=price))
            cursor = end
        return segments

    @BaseService.measure_operation("validate_booking")
    def validate(
        self,
        service_ids: Sequence[str],
        start_at: datetime,
        *,
        now: Optional[datetime] = None,
        services: Optional[Sequence[CatalogService]] = None,
        prices: Optional[Sequence[Decimal]] = None,
    ) -> ValidationResult:
        """
        Validate a single or chained booking request.

        Pass ``services`` when the catalog entries were already fetched so
        the lookup is not repeated under the booking lock.

        Raises:
            ValidationException: start not in the future, bad duration
            BookingConflictException: reason is "slot unavailable",
                "date blocked" or "slot not aligned"
        """
        start_utc = ensure_utc(start_at)
        current = ensure_utc(now) if now is not None else utc_now()
        if start_utc <= current:
            raise ValidationException(
                "Appointments must start in the future",
                code="START_NOT_IN_FUTURE",
                details={"start_at": start_utc.isoformat()},
            )

        resolved = list(services) if services is not None else self.resolve_services(service_ids)
        if not resolved:
            raise ValidationException("At least one service is required")
        segments = self.chain_segments(resolved, start_utc, prices)
        total_minutes = sum(s.duration_minutes for s in resolved)
        end_utc = start_utc + timedelta(minutes=total_minutes)

        clash = self.appointment_repository.find_overlapping(start_utc, end_utc)
        if clash is not None:
            raise BookingConflictException(
                reason=SLOT_UNAVAILABLE,
                details={"start_at": start_utc.isoformat(), "end_at": end_utc.isoformat()},
            )

        civil_date = civil_date_of(start_utc, self.availability_service.tz_name)
        blocked = self.blocked_date_repository.get_for_date(civil_date)
        if blocked is not None:
            raise BookingConflictException(
                "This date is not available for bookings",
                reason=DATE_BLOCKED,
                details={"date": civil_date.isoformat(), "blocked_reason": blocked.reason},
            )

        # Grid check for the combined duration. Booked intervals are already
        # known not to overlap, so only alignment matters here.
        source, source_name = self.availability_service.resolve_source(
            civil_date, resolved[0].id
        )
        slots = self.availability_service.build_slots(civil_date, source, total_minutes)
        if find_slot(slots, start_utc) is None:
            raise BookingConflictException(
                "The requested time is not one of the available slots",
                reason=SLOT_NOT_ALIGNED,
                details={
                    "date": civil_date.isoformat(),
                    "time": format_local_time(start_utc, self.availability_service.tz_name),
                    "duration_minutes": total_minutes,
                },
            )

        return ValidationResult(
            start_at=start_utc,
            end_at=end_utc,
            civil_date=civil_date,
            total_minutes=total_minutes,
            segments=segments,
            source=source_name,
        )

    @BaseService.measure_operation("check_interval_free")
    def check_interval_free(
        self, start_at: datetime, end_at: datetime, exclude_id: Optional[str] = None
    ) -> None:
        """Raise BookingConflictException if another BOOKED appointment overlaps."""
        clash = self.appointment_repository.find_overlapping(
            ensure_utc(start_at), ensure_utc(end_at), exclude_id=exclude_id
        )
        if clash is not None:
            self.logger.warning(
                f"Interval {start_at.isoformat()}-{end_at.isoformat()} overlaps appointment {clash.id}"
            )
            raise BookingConflictException(
                reason=SLOT_UNAVAILABLE, details={"clashing_id": clash.id}
            )
