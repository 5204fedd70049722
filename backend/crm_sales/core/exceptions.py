"""
Domain Errors

Every failure the engine reports to callers is one of these. The API layer
turns them into ``{"code", "message", "details"}`` responses.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for errors carrying a machine-readable code"""

    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(DomainError):
    """Malformed or out-of-range input, rejected before any write"""

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details=details)


class BusinessRuleViolation(DomainError):
    """A well-formed command the current state does not allow"""

    code = "BUSINESS_RULE_VIOLATION"
    status_code = 400


class InvalidTransition(BusinessRuleViolation):
    code = "INVALID_TRANSITION"

    def __init__(self, kind: str, current: str, target: str):
        super().__init__(
            f"Cannot move {kind} from '{current}' to '{target}'",
            details={"current_status": current, "requested_status": target},
        )


class ConcurrencyConflict(DomainError):
    """Version mismatch or lock timeout; the caller should reload and retry"""

    code = "CONCURRENCY_CONFLICT"
    status_code = 409
    retryable = True


class NotFound(DomainError):
    """Unknown id, or an id that belongs to another tenant"""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(f"{resource} not found", details={"resource": resource, "id": resource_id})
