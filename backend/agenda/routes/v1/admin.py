# backend/agenda/routes/v1/admin.py
"""
Staff routes - API v1

Every endpoint requires the staff bearer token.

Endpoints:
    POST /appointments - Book on a customer's behalf
    PATCH /appointments/{id} - Reschedule or change duration
    DELETE /appointments/{id} - Delete, giving back the loyalty point
    POST /appointments/{id}/cancel - Cancel a booked appointment
    POST /appointments/{id}/complete - Mark done with payment breakdown
    POST /appointments/{id}/revert - Return to booked
    GET /agenda?from=&to= - Appointments in a date range
    GET|PUT /availability/schedule - Weekly schedule
    GET|PUT /availability/legacy-rules - Legacy flat rules
    POST /availability/migrate - Legacy rules to weekly schedule
    GET|POST /availability/blocked-dates - Blocked dates
    POST /availability/blocked-dates/batch - Block several dates
    DELETE /availability/blocked-dates/{id} - Unblock a date
    POST /availability/blocked-dates/batch-delete - Unblock several dates
    GET|PUT /availability/overrides - Per-date overrides
    DELETE /availability/overrides/{id} - Remove an override
    POST /loyalty/adjust - Set a customer's loyalty points
"""

from datetime import date
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ...api.dependencies import (
    get_booking_service,
    get_schedule_admin_service,
    require_staff,
)
from ...core.exceptions import DomainException
from ...models.appointment import AppointmentStatus
from ...schemas.booking import (
    AppointmentReschedule,
    AppointmentResponse,
    CompleteAppointmentRequest,
    LoyaltyAdjustRequest,
    LoyaltyAdjustResponse,
    StaffAppointmentCreate,
)
from ...schemas.schedule import (
    BlockedDateBatchCreate,
    BlockedDateBatchDelete,
    BlockedDateBatchDeleteResponse,
    BlockedDateCreate,
    BlockedDateResponse,
    DateOverrideResponse,
    DateOverrideUpsert,
    LegacyRuleResponse,
    LegacyRulesUpdate,
    MigrationResult,
    WeekScheduleResponse,
    WeekScheduleUpdate,
)
from ...services.booking_service import BookingService
from ...services.schedule_admin_service import ScheduleAdminService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


# Appointments


@router.post(
    "/appointments", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED
)
def create_appointment(
    payload: StaffAppointmentCreate,
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    """Book for a customer; off-grid starts and blocked dates are allowed."""
    try:
        appointment = booking_service.staff_create(
            payload.service_id,
            payload.start_at,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            notes=payload.notes,
            duration_minutes=payload.duration_minutes,
            performed_by=staff,
        )
    except DomainException as e:
        raise e.to_http_exception()
    return AppointmentResponse.model_validate(appointment)


@router.patch("/appointments/{appointment_id}", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: str,
    payload: AppointmentReschedule,
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    try:
        appointment = booking_service.reschedule(
            appointment_id,
            start_at=payload.start_at,
            end_at=payload.end_at,
            notes=payload.notes,
            performed_by=staff,
        )
    except DomainException as e:
        raise e.to_http_exception()
    return AppointmentResponse.model_validate(appointment)


@router.delete("/appointments/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: str,
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> Response:
    try:
        booking_service.delete(appointment_id, performed_by=staff)
    except DomainException as e:
        raise e.to_http_exception()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    try:
        appointment = booking_service.cancel(appointment_id, performed_by=staff)
    except DomainException as e:
        raise e.to_http_exception()
    return AppointmentResponse.model_validate(appointment)


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: str,
    payload: CompleteAppointmentRequest,
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    try:
        appointment = booking_service.complete(
            appointment_id,
            received_amount=payload.received_amount,
            payments=[(part.method.value, part.amount) for part in payload.payments],
            performed_by=staff,
        )
    except DomainException as e:
        raise e.to_http_exception()
    return AppointmentResponse.model_validate(appointment)


@router.post("/appointments/{appointment_id}/revert", response_model=AppointmentResponse)
def revert_appointment(
    appointment_id: str,
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    try:
        appointment = booking_service.revert(appointment_id, performed_by=staff)
    except DomainException as e:
        raise e.to_http_exception()
    return AppointmentResponse.model_validate(appointment)


@router.get("/agenda", response_model=List[AppointmentResponse])
def get_agenda(
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    status_filter: Optional[List[AppointmentStatus]] = Query(None, alias="status"),
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[AppointmentResponse]:
    try:
        appointments = booking_service.get_agenda(from_date, to_date, status_filter)
    except DomainException as e:
        raise e.to_http_exception()
    return [AppointmentResponse.model_validate(a) for a in appointments]


# Weekly schedule and legacy rules


@router.get("/availability/schedule", response_model=WeekScheduleResponse)
def get_week_schedule(
    service_id: Optional[str] = Query(None),
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> WeekScheduleResponse:
    try:
        schedule, source = admin_service.get_week_schedule(service_id)
    except DomainException as e:
        raise e.to_http_exception()
    return WeekScheduleResponse.from_domain(schedule, source=source, service_id=service_id)


@router.put("/availability/schedule", response_model=WeekScheduleResponse)
def replace_week_schedule(
    payload: WeekScheduleUpdate,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> WeekScheduleResponse:
    """Replace all seven days at once."""
    try:
        schedule = admin_service.replace_week_schedule(payload.to_domain(), payload.service_id)
    except DomainException as e:
        raise e.to_http_exception()
    return WeekScheduleResponse.from_domain(
        schedule, source="weekly", service_id=payload.service_id
    )


@router.get("/availability/legacy-rules", response_model=List[LegacyRuleResponse])
def get_legacy_rules(
    service_id: Optional[str] = Query(None),
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> List[LegacyRuleResponse]:
    rows = admin_service.get_legacy_rules(service_id)
    return [LegacyRuleResponse.model_validate(row) for row in rows]


@router.put("/availability/legacy-rules", response_model=List[LegacyRuleResponse])
def replace_legacy_rules(
    payload: LegacyRulesUpdate,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> List[LegacyRuleResponse]:
    try:
        rows = admin_service.replace_legacy_rules(
            [rule.to_domain() for rule in payload.rules], payload.service_id
        )
    except DomainException as e:
        raise e.to_http_exception()
    return [LegacyRuleResponse.model_validate(row) for row in rows]


@router.post("/availability/migrate", response_model=MigrationResult)
def migrate_legacy_rules(
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> MigrationResult:
    try:
        return admin_service.migrate_legacy_rules()
    except DomainException as e:
        raise e.to_http_exception()


# Blocked dates


@router.get("/availability/blocked-dates", response_model=List[BlockedDateResponse])
def list_blocked_dates(
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> List[BlockedDateResponse]:
    rows = admin_service.list_blocked_dates(from_date, to_date)
    return [BlockedDateResponse.model_validate(row) for row in rows]


@router.post(
    "/availability/blocked-dates",
    response_model=BlockedDateResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_blocked_date(
    payload: BlockedDateCreate,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> BlockedDateResponse:
    try:
        row = admin_service.add_blocked_date(payload.date, payload.reason)
    except DomainException as e:
        raise e.to_http_exception()
    return BlockedDateResponse.model_validate(row)


@router.post(
    "/availability/blocked-dates/batch",
    response_model=List[BlockedDateResponse],
    status_code=status.HTTP_201_CREATED,
)
def add_blocked_dates(
    payload: BlockedDateBatchCreate,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> List[BlockedDateResponse]:
    """Dates that are already blocked are skipped; only new rows are returned."""
    try:
        rows = admin_service.add_blocked_dates(payload.dates, payload.reason)
    except DomainException as e:
        raise e.to_http_exception()
    return [BlockedDateResponse.model_validate(row) for row in rows]


@router.delete(
    "/availability/blocked-dates/{blocked_date_id}", status_code=status.HTTP_204_NO_CONTENT
)
def remove_blocked_date(
    blocked_date_id: str,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> Response:
    try:
        admin_service.remove_blocked_date(blocked_date_id)
    except DomainException as e:
        raise e.to_http_exception()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/availability/blocked-dates/batch-delete", response_model=BlockedDateBatchDeleteResponse
)
def remove_blocked_dates(
    payload: BlockedDateBatchDelete,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> BlockedDateBatchDeleteResponse:
    """Unknown ids are ignored; the count covers rows actually removed."""
    try:
        deleted = admin_service.remove_blocked_dates(payload.ids)
    except DomainException as e:
        raise e.to_http_exception()
    return BlockedDateBatchDeleteResponse(deleted=deleted)


# Date overrides


@router.get("/availability/overrides", response_model=List[DateOverrideResponse])
def list_date_overrides(
    from_date: Optional[date] = Query(None, alias="from"),
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> List[DateOverrideResponse]:
    rows = admin_service.list_date_overrides(from_date)
    return [DateOverrideResponse.model_validate(row) for row in rows]


@router.put("/availability/overrides", response_model=DateOverrideResponse)
def set_date_override(
    payload: DateOverrideUpsert,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> DateOverrideResponse:
    """Create or replace the override for ``payload.date``."""
    try:
        override = admin_service.set_date_override(
            payload.date, [w.to_domain() for w in payload.time_windows], payload.note
        )
    except DomainException as e:
        raise e.to_http_exception()
    return DateOverrideResponse.model_validate(override)


@router.delete("/availability/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_date_override(
    override_id: str,
    staff: str = Depends(require_staff),
    admin_service: ScheduleAdminService = Depends(get_schedule_admin_service),
) -> Response:
    try:
        admin_service.remove_date_override(override_id)
    except DomainException as e:
        raise e.to_http_exception()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Loyalty


@router.post("/loyalty/adjust", response_model=LoyaltyAdjustResponse)
def adjust_loyalty(
    payload: LoyaltyAdjustRequest,
    staff: str = Depends(require_staff),
    booking_service: BookingService = Depends(get_booking_service),
) -> LoyaltyAdjustResponse:
    try:
        record = booking_service.set_loyalty_points(
            payload.customer_phone, payload.points, performed_by=staff
        )
    except DomainException as e:
        raise e.to_http_exception()
    return LoyaltyAdjustResponse(
        customer_ref=record.ref,
        customer_phone=record.phone,
        loyalty_points=record.loyalty_points,
    )
