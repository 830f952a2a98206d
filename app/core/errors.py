"""
Subscription service exceptions.

Every error carries a machine-readable code, the HTTP status it maps to and a
list of field-level details ({field, message, value}) so callers can point at
the offending input.
"""
from typing import Any, Dict, List, Optional


class SubscriptionServiceError(Exception):
    """Base error for subscription and licensing operations."""

    error_code = "SUBSCRIPTION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        details: Optional[List[Dict[str, Any]]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or []
        self.context = context or {}
        super().__init__(message)

    @classmethod
    def for_field(cls, message: str, field: str, reason: str, value: Any = None, **context):
        """Build an error with a single field detail."""
        return cls(message, details=[{"field": field, "message": reason, "value": value}], context=context)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "errors": [_jsonable_detail(d) for d in self.details],
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


class ValidationError(SubscriptionServiceError):
    """Request or state is invalid for the requested operation."""

    error_code = "VALIDATION_ERROR"
    status_code = 422


class NotFoundError(SubscriptionServiceError):
    """Resource does not exist within the caller's organization."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, resource_type: str, resource_id: Any):
        super().__init__(message, context={"resource_type": resource_type, "resource_id": resource_id})


class ConflictError(SubscriptionServiceError):
    """Resource already exists."""

    error_code = "CONFLICT"
    status_code = 409

    def __init__(self, message: str, resource_type: str, existing_id: Any, conflict_type: str = "duplicate"):
        super().__init__(
            message,
            context={
                "conflict_type": conflict_type,
                "resource_type": resource_type,
                "existing_id": existing_id,
            },
        )


class LicenseForbiddenError(SubscriptionServiceError):
    """Module is not licensed for the cabinet."""

    error_code = "LICENSE_FORBIDDEN"
    status_code = 403


class PaymentRequiredError(LicenseForbiddenError):
    """Subscription has lapsed and must be renewed."""

    error_code = "PAYMENT_REQUIRED"
    status_code = 402


def _jsonable(value: Any) -> Any:
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "value"):  # enums
        return value.value
    return str(value)


def _jsonable_detail(detail: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _jsonable(v) for k, v in detail.items()}
