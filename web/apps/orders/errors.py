"""Error taxonomy shared by the order flow and the payment adapter.

Every error carries the HTTP status it maps to and a short machine code,
so views can render ``{"message", "code", ...}`` without a lookup table.
Extra keyword fields are merged into the rendered body.
"""


class StoreError(Exception):
    status_code = 500
    code = "ERROR"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_body(self) -> dict:
        body = {"message": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationFailed(StoreError):
    """Malformed or missing input. ``errors`` holds field-level detail."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[dict], message: str = "Validation failed"):
        super().__init__(message, errors=errors)
        self.errors = errors


class NotFound(StoreError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(StoreError):
    status_code = 400
    code = "CONFLICT"


class IllegalTransition(Conflict):
    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(
            message or f"Cannot move order from {current} to {target}",
            currentStatus=current,
            targetStatus=target,
        )
        self.current = current
        self.target = target


class InsufficientStock(StoreError):
    status_code = 400
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, name: str, available: int):
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}",
            productId=str(product_id),
            available=available,
        )
        self.product_id = product_id
        self.available = available


class ConfigurationError(StoreError):
    """Operator-actionable: something required is not configured. Never retried."""

    status_code = 500
    code = "CONFIGURATION_ERROR"


class UpstreamError(StoreError):
    """The payment provider answered with an error or could not be reached."""

    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, status_code: int = 502, details=None, error=None):
        super().__init__(message, details=details, error=error)
        self.status_code = status_code


class UpstreamTimeout(UpstreamError):
    """No answer in time. The outcome is unknown: the push may still reach the phone."""

    code = "UPSTREAM_TIMEOUT"

    def __init__(self, message: str, details=None):
        super().__init__(message, status_code=504, details=details, error={"outcome": "unknown"})


class InternalError(StoreError):
    status_code = 500
    code = "INTERNAL_ERROR"
