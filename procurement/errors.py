"""
Typed errors raised by the purchase request lifecycle engine.

Every error carries a machine-readable ``code`` plus the PR's current status
and the attempted action, so the API layer can render a user-facing message
without parsing strings.

    ProcurementError
    +-- NotFound              NOT_FOUND
    +-- InvalidTransition     INVALID_TRANSITION
    +-- Forbidden             FORBIDDEN
    +-- StaleState            STALE_STATE
    +-- Blocked               BLOCKED
    +-- InvalidReassignment   INVALID_REASSIGNMENT
    +-- ValidationError       VALIDATION_ERROR
"""
from typing import Any, Dict, Optional


class ProcurementError(Exception):
    code: str = "PROCUREMENT_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        action: Optional[str] = None,
        pr_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.current_status = _status_value(current_status)
        self.action = action
        self.pr_id = pr_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "current_status": self.current_status,
            "action": self.action,
            "pr_id": self.pr_id,
        }


class NotFound(ProcurementError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidTransition(ProcurementError):
    """The status/action pair has no edge in the status registry."""
    code = "INVALID_TRANSITION"
    http_status = 409


class Forbidden(ProcurementError):
    """The acting user does not own the PR's current status."""
    code = "FORBIDDEN"
    http_status = 403


class StaleState(ProcurementError):
    """The PR moved on since the caller observed it."""
    code = "STALE_STATE"
    http_status = 409


class Blocked(ProcurementError):
    """A pending budget exception suspends normal processing."""
    code = "BLOCKED"
    http_status = 423


class InvalidReassignment(ProcurementError):
    code = "INVALID_REASSIGNMENT"
    http_status = 400


class ValidationError(ProcurementError):
    """Missing mandatory comment/reason or invalid quantities and amounts."""
    code = "VALIDATION_ERROR"
    http_status = 422


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)
