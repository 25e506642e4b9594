"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the global exception handler
in main.py. Primary-operation failures (validation, not found, precondition)
abort with no partial state change; side-effect failures are caught by the
caller and never surface here.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class NotFoundError(DomainError):
    """Resource not found (404)."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Malformed input to a core operation (400). Never retried."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidStatusError(DomainError):
    """Unrecognized status enum value (400)."""
    def __init__(self, value: str, allowed: list[str] | None = None):
        details = {"allowed": allowed} if allowed else None
        super().__init__(f"Unrecognized status: {value}", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PreconditionError(DomainError):
    """Valid request, wrong order state (409)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


class ConcurrencyConflictError(DomainError):
    """Optimistic-concurrency retries exhausted (409)."""
    def __init__(self, order_id: str, attempts: int):
        super().__init__(
            f"Order {order_id} was modified concurrently; gave up after {attempts} attempts",
            status_code=status.HTTP_409_CONFLICT,
            details={"orderId": order_id, "attempts": attempts},
        )


class InsufficientStockError(DomainError):
    """Stock decrement would drive inventory negative (409)."""
    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}",
            status_code=status.HTTP_409_CONFLICT,
            details={"productId": product_id, "requested": requested, "available": available},
        )


class UpstreamError(DomainError):
    """Carrier/payment provider failure (502). Carries the upstream status/message."""
    def __init__(
        self,
        provider: str,
        message: str,
        upstream_status: int | None = None,
        details: dict | list | None = None,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
    ):
        super().__init__(
            f"{provider} error: {message}",
            status_code=status_code,
            details={"provider": provider, "upstreamStatus": upstream_status, "errors": details},
        )
        self.provider = provider
        self.upstream_message = message
        self.upstream_status = upstream_status


class CarrierTimeoutError(UpstreamError):
    """Carrier call exceeded its timeout/retry budget (504)."""
    def __init__(self, provider: str, attempts: int):
        super().__init__(
            provider,
            f"no response after {attempts} attempt(s)",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
        )


class PermissionDeniedError(DomainError):
    """Permission denied (403)."""
    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)
