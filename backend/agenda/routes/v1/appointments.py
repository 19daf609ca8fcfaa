# backend/agenda/routes/v1/appointments.py
"""
Public booking routes - API v1

Endpoints:
    POST / - Book one service
    POST /batch - Book several services back-to-back
"""

from decimal import Decimal
import logging

from fastapi import APIRouter, Depends, status

from ...api.dependencies import get_booking_service
from ...core.exceptions import DomainException
from ...schemas.booking import (
    AppointmentCreate,
    AppointmentResponse,
    BatchAppointmentCreate,
    BatchAppointmentResponse,
)
from ...services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["appointments"])


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentCreate,
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    try:
        appointment = booking_service.create_booking(
            payload.service_id,
            payload.start_at,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            notes=payload.notes,
        )
    except DomainException as e:
        raise e.to_http_exception()
    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/batch", response_model=BatchAppointmentResponse, status_code=status.HTTP_201_CREATED
)
def create_batch_appointments(
    payload: BatchAppointmentCreate,
    booking_service: BookingService = Depends(get_booking_service),
) -> BatchAppointmentResponse:
    """Services are chained in the order given, each starting where the previous ends."""
    try:
        appointments = booking_service.create_batch_booking(
            payload.service_ids,
            payload.start_at,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            notes=payload.notes,
        )
    except DomainException as e:
        raise e.to_http_exception()
    return BatchAppointmentResponse(
        batch_id=appointments[0].batch_id,
        appointments=[AppointmentResponse.model_validate(a) for a in appointments],
        total_duration_min=sum(a.service_duration_min for a in appointments),
        total_price=sum((Decimal(a.service_price) for a in appointments), Decimal("0")),
    )
