"""
Error types shared by the record, KYC and administration services.

Every error carries the HTTP status code and machine-readable code the routers
use when translating it into a response.
"""

from typing import Iterable, List, Optional

from fastapi import HTTPException


class RecordsError(Exception):
    """Base class for all caller-visible service errors."""
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RecordsError):
    """Malformed or missing input; correctable by the caller."""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(RecordsError):
    """Unknown entity id or version number."""
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, message: Optional[str] = None):
        super().__init__(message or f"{resource} not found")
        self.resource = resource


class ForbiddenError(RecordsError):
    """Role, ownership or field-level permission check failed."""
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str, offending_fields: Iterable[str] = ()):
        super().__init__(message)
        self.offending_fields: List[str] = sorted(offending_fields)


class InvalidReasonError(RecordsError):
    """Change reason missing, too short or too long for a critical change."""
    status_code = 400
    code = "INVALID_REASON"

    def __init__(self, message: str, critical_fields: Iterable[str] = ()):
        super().__init__(message)
        self.critical_fields: List[str] = sorted(critical_fields)


class ConflictError(RecordsError):
    """Duplicate identity on creation."""
    status_code = 409
    code = "CONFLICT"


class ConcurrentModificationError(RecordsError):
    """The version a commit was based on is no longer current."""
    status_code = 409
    code = "CONCURRENT_MODIFICATION"


class IntegrityViolationError(RecordsError):
    """Storage no longer satisfies the single-current-version invariant."""
    status_code = 500
    code = "INTEGRITY_VIOLATION"


def to_http_exception(error: RecordsError) -> HTTPException:
    """Translate a service error into the HTTP error returned to clients."""
    detail = {"error": error.message, "code": error.code}
    if isinstance(error, ForbiddenError) and error.offending_fields:
        detail["fields"] = error.offending_fields
    if isinstance(error, InvalidReasonError) and error.critical_fields:
        detail["fields"] = error.critical_fields
    return HTTPException(status_code=error.status_code, detail=detail)
