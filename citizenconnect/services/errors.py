"""
Typed errors raised by the service layer.

Each carries an HTTP status and a structured body so the API layer can render
it without knowing which operation failed.
"""
from typing import Any, Dict, List, Optional


class CitizenConnectError(Exception):
    """Base class for all service-layer failures."""
    status_code = 500
    error = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.error, "message": self.message}
        body.update(self.details())
        return body


class ValidationError(CitizenConnectError):
    """Malformed or missing input. User-correctable."""
    status_code = 400
    error = "validation_error"

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.fields = fields or []
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        return {"fields": self.fields} if self.fields else {}


class InvalidTransition(CitizenConnectError):
    """
    A status change the status machine does not allow.

    Carries the allowed next statuses so a client can offer only legal moves.
    """
    status_code = 400
    error = "invalid_transition"

    def __init__(self, message: str, current_status: Optional[str], allowed_next_statuses: List[str]):
        self.current_status = current_status
        self.allowed_next_statuses = allowed_next_statuses
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        return {
            "currentStatus": self.current_status,
            "allowedNextStatuses": self.allowed_next_statuses,
        }


class Forbidden(CitizenConnectError):
    """Role or department/ward scope does not permit the operation."""
    status_code = 403
    error = "forbidden"


class NotFound(CitizenConnectError):
    """A referenced complaint, user or notification does not exist."""
    status_code = 404
    error = "not_found"


class InternalError(CitizenConnectError):
    """Persistence or infrastructure failure."""
    status_code = 500
    error = "internal_error"
