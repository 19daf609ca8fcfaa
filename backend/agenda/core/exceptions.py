# backend/agenda/core/exceptions.py
"""
Error types for the agenda services.

Each DomainException subclass carries its HTTP status; routes convert with
``to_http_exception()`` and the app-level handler covers anything that
escapes a route. The JSON body is always
``{"detail": {"message", "code", "details"}}``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when a request is malformed or violates input rules."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """The request collides with stored state (a booking, a blocked date)."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Well-formed request the current state does not allow, such as an illegal transition."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """No staff credentials were presented."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Credentials were presented but do not grant staff access."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """A database failure inside a service transaction; never leaks driver text to clients."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": "The agenda could not complete the request, please retry",
                "code": self.code,
                "details": {},
            },
        )


class ExternalDependencyException(DomainException):
    """Raised when a collaborator (catalog, customer store, gateway) is unreachable."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        dependency: str,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or f"{dependency} is unavailable",
            code="EXTERNAL_DEPENDENCY_FAILURE",
            details={"dependency": dependency, **(details or {})},
        )
        self.dependency = dependency


# Specific business exceptions

SLOT_UNAVAILABLE = "slot unavailable"
DATE_BLOCKED = "date blocked"
SLOT_NOT_ALIGNED = "slot not aligned"


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with the calendar."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        reason: str = SLOT_UNAVAILABLE,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details={"reason": reason, **(details or {})},
        )
        self.reason = reason


class IntegrityViolationException(ConflictException):
    """
    Raised by the write path when the store detects an overlapping BOOKED row.

    The booking service retries on this before surfacing a BookingConflictException,
    so it only reaches the API layer when a caller bypasses the service.
    """

    def __init__(self, message: str = "Overlapping booking detected at write time", **kwargs: Any):
        super().__init__(message=message, code="INTEGRITY_VIOLATION", **kwargs)


class InvalidTransitionException(BusinessRuleException):
    """Raised when an appointment status change is not allowed."""

    def __init__(self, current: str, target: str):
        super().__init__(
            message=f"Cannot move appointment from {current} to {target}",
            code="INVALID_STATUS_TRANSITION",
            details={"current_status": current, "target_status": target},
        )


class BlockedDateExistsException(ConflictException):
    """Raised when a date is already blocked."""

    def __init__(self, blocked_date: str):
        super().__init__(
            message=f"Date {blocked_date} is already blocked",
            code="BLOCKED_DATE_EXISTS",
            details={"date": blocked_date},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
