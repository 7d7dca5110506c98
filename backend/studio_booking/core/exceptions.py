# backend/studio_booking/core/exceptions.py
"""
Domain-specific exceptions for the studio booking engine.

Every engine failure carries a specific kind so the presentation layer can
render an actionable message. The API layer converts them with
``to_http_exception()``.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

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
            status_code=self.http_status,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when caller input is malformed. Never retried automatically."""

    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    http_status = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    http_status = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    http_status = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.http_status,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific engine exceptions


class CapacityConflictException(ConflictException):
    """A slot filled up between selection and submission."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        slots: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(
            message=message or "One or more selected slots are no longer available",
            code="SLOT_NO_LONGER_AVAILABLE",
            details={"slots": slots or []},
        )


class HoldExpiredException(ConflictException):
    """The gift card hold is no longer active (expired or released)."""

    def __init__(self, hold_id: str, hold_status: str = "expired"):
        super().__init__(
            message=f"Gift card hold {hold_id} is no longer active",
            code="HOLD_EXPIRED",
            details={"hold_id": hold_id, "status": hold_status},
        )


class HoldAlreadyConsumedException(ConflictException):
    """The gift card hold was already redeemed for another booking."""

    def __init__(self, hold_id: str, booking_id: Optional[str]):
        super().__init__(
            message=f"Gift card hold {hold_id} was already redeemed",
            code="HOLD_ALREADY_CONSUMED",
            details={"hold_id": hold_id, "booking_id": booking_id},
        )


class InsufficientGiftcardBalanceException(BusinessRuleException):
    """Raised when a hold would exceed the spendable gift card balance."""

    def __init__(self, giftcard_id: str, requested: float, available: float):
        super().__init__(
            message="Gift card balance is insufficient for this amount",
            code="INSUFFICIENT_FUNDS",
            details={
                "giftcard_id": giftcard_id,
                "requested": requested,
                "available": available,
            },
        )


class PolicyViolationException(BusinessRuleException):
    """A booking inside the no-refund horizon lacks an explicit acknowledgement."""

    def __init__(self, horizon_hours: int, earliest_slot: Optional[str] = None):
        super().__init__(
            message=(
                f"Bookings starting within {horizon_hours} hours are non-refundable "
                "and must be accepted explicitly"
            ),
            code="NO_REFUND_ACK_REQUIRED",
            details={"horizon_hours": horizon_hours, "earliest_slot": earliest_slot},
        )


class BookingStateException(ConflictException):
    """The booking is not in a state that allows the requested transition."""

    def __init__(self, booking_id: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} booking {booking_id} in status '{current_status}'",
            code="INVALID_BOOKING_STATE",
            details={"booking_id": booking_id, "status": current_status, "action": action},
        )


class TransientStoreException(ServiceException):
    """Persistence hiccup or lock timeout. Safe to retry with backoff."""

    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(
        self,
        message: str = "The booking ledger is temporarily unavailable",
        *,
        details: Optional[Dict[str, Any]] = None,
        fallback: Optional[List[Any]] = None,
    ):
        super().__init__(message=message, code="TRANSIENT_STORE_ERROR", details=details)
        # Fully-booked slots callers may render while the ledger is unreachable
        self.fallback = fallback or []

    def to_http_exception(self) -> HTTPException:
        exc = super().to_http_exception()
        exc.headers = {"Retry-After": "2"}
        return exc


class FatalInvariantException(ServiceException):
    """An engine invariant broke. Indicates a logic bug; never clamped or retried."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVARIANT_VIOLATION", details=details)


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
