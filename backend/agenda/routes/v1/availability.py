# backend/agenda/routes/v1/availability.py
"""
Public availability routes - API v1

Endpoints:
    GET /{service_id}?date= - Slots for one civil date
    GET /{service_id}/range?from=&to=&duration= - Slots for a date range
"""

from datetime import date
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_availability_service
from ...core.exceptions import DomainException
from ...schemas.availability import DayAvailability, RangeAvailability
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability"])


@router.get("/{service_id}", response_model=DayAvailability)
def get_day_availability(
    service_id: str,
    target_date: date = Query(..., alias="date"),
    duration: Optional[int] = Query(None, gt=0, le=1440),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> DayAvailability:
    """Bookable slots for ``service_id`` on one civil date."""
    try:
        return availability_service.get_slots_for_date(
            target_date, service_id, duration_override=duration
        )
    except DomainException as e:
        raise e.to_http_exception()


@router.get("/{service_id}/range", response_model=RangeAvailability)
def get_range_availability(
    service_id: str,
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    duration: Optional[int] = Query(None, gt=0, le=1440),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> RangeAvailability:
    """
    Slots for every date in [from, to].

    Blocked dates come back with an empty slot list and their reason.
    """
    try:
        return availability_service.get_slots_for_range(
            from_date, to_date, service_id, duration_override=duration
        )
    except DomainException as e:
        raise e.to_http_exception()
