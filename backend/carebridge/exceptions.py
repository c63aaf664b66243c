"""
CareBridge Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for every failure the pipeline can report.
How:   Each exception carries a message and a context dict. Global handlers in
       main.py translate them into `{error, message, details, request_id}` JSON.
Who:   Raised by services and route dependencies; caught by global handlers.

Exception Hierarchy:
    CareBridgeError (base)
    ├── ValidationError          → 400 Bad Request
    ├── OtpError                 → 400 Bad Request (missing, expired or wrong code)
    ├── AuthenticationError      → 401 Unauthorized
    ├── AuthorizationError       → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── ConflictError            → 409 Conflict
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── ExternalServiceError     → 502 Bad Gateway
    │   ├── PaymentError         → 402 Payment Required
    │   ├── RefundError          → 502
    │   ├── SettlementError      → 502
    │   └── NotificationError    → 502
    ├── CircuitBreakerOpenError  → 503 Service Unavailable
    └── DatabaseError            → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class CareBridgeError(Exception):
    """
    Base exception for all CareBridge application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info, returned as `details` where the handler allows
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CareBridgeError):
    """
    Raised when input or current state makes the request impossible.

    Covers malformed booking windows, unknown status values, incomplete payment
    details and operations attempted from the wrong lifecycle state.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class OtpError(CareBridgeError):
    """Raised when a signing OTP is absent, expired or does not match."""

    def __init__(
        self,
        message: str = "The one-time password is invalid or has expired",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthenticationError(CareBridgeError):
    """Raised when the request carries no caller identity."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationError(CareBridgeError):
    """
    Raised when the caller's role or party membership forbids the action.

    Example: a nurse trying to process payment, or an elderly client paying
    for a transaction that names a different elderly profile.
    """

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(CareBridgeError):
    """Raised when a referenced matching, contract, transaction, dispute or profile is absent."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(CareBridgeError):
    """
    Raised when the request would duplicate existing state.

    Examples: a second transaction for the same contract, a second signature
    confirmation for a role that has already signed, an unavailable nurse.
    """

    def __init__(
        self,
        message: str = "The request conflicts with the current state",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ExternalServiceError(CareBridgeError):
    """
    Raised when an outbound call (ledger, bank gateway, email) fails or times out.

    Subclasses name the operation that failed so handlers and callers can
    distinguish payment, refund, settlement and notification failures.
    """

    status_code = 502
    error_code = "external_service_error"

    def __init__(
        self,
        message: str = "An external service failed to complete the request",
        service: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if service:
            ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.service = service


class PaymentError(ExternalServiceError):
    """The payment attempt was declined or the transfer failed."""

    status_code = 402
    error_code = "payment_failed"

    def __init__(
        self,
        message: str = "Payment could not be completed",
        service: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, service=service, context=context)


class RefundError(ExternalServiceError):
    """The refund was declined; the transaction keeps its completed status."""

    error_code = "refund_failed"

    def __init__(
        self,
        message: str = "Refund could not be completed",
        service: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, service=service, context=context)


class SettlementError(ExternalServiceError):
    """Writing the settlement record to the ledger failed."""

    error_code = "settlement_failed"

    def __init__(
        self,
        message: str = "The signed contract could not be recorded on the ledger",
        service: Optional[str] = "ledger",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, service=service, context=context)


class NotificationError(ExternalServiceError):
    """Email dispatch failed."""

    error_code = "notification_failed"

    def __init__(
        self,
        message: str = "The notification could not be delivered",
        service: Optional[str] = "email",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, service=service, context=context)


class CircuitBreakerOpenError(CareBridgeError):
    """
    Raised when the ledger circuit breaker is OPEN.

    CLOSED → (threshold failures) → OPEN → (recovery timeout) → HALF_OPEN
    → success closes the circuit, failure re-opens it.
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The ledger service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class DatabaseError(CareBridgeError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; the context is
    logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(CareBridgeError):
    """Raised when a client exceeds the per-IP request rate limit."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
