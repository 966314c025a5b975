"""
Workflow error taxonomy.

Every error raised by the workflow services carries the HTTP status code it maps
to, so routers never translate errors by hand. ``DeliveryError`` is the only one
that never reaches a caller: the notification dispatcher catches and logs it.
"""

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for errors raised by the workflow engine."""

    status_code: int = 500
    error_code: str = "WorkflowError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "detail": self.message}


class NotFound(WorkflowError):
    status_code = 404
    error_code = "NotFound"


class Forbidden(WorkflowError):
    status_code = 403
    error_code = "Forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class ValidationError(WorkflowError):
    status_code = 400
    error_code = "ValidationError"


class InvalidStatus(WorkflowError):
    status_code = 400
    error_code = "InvalidStatus"


class InvalidTransition(WorkflowError):
    """Raised when the requested edge is not in the transition table."""

    status_code = 400
    error_code = "InvalidTransition"

    def __init__(self, from_status: Any, to_status: Any, message: Optional[str] = None):
        self.from_status = getattr(from_status, "value", from_status)
        self.to_status = getattr(to_status, "value", to_status)
        super().__init__(
            message or f"Cannot change status from {self.from_status} to {self.to_status}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["from_status"] = self.from_status
        data["to_status"] = self.to_status
        return data


class ConflictError(WorkflowError):
    status_code = 409
    error_code = "ConflictError"


class TransactionTimeoutError(WorkflowError):
    status_code = 503
    error_code = "TransactionTimeout"


class DeliveryError(WorkflowError):
    """Email or live-push delivery failed. Logged, never propagated."""

    status_code = 502
    error_code = "DeliveryError"
