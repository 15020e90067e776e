"""
Error taxonomy for the purchase order lifecycle engine.

Every failure the engine reports is a LifecycleError subclass. The
orchestrator converts them into OperationResult.failure at its public
boundary; anything else is a programming error and propagates.
"""
from typing import Any, Optional

from models.result import OperationError


class LifecycleError(Exception):
    kind = "LifecycleError"
    default_code = "LIFECYCLE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        errors: Optional[list] = None,
        warnings: Optional[list] = None,
        details: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])
        self.details = dict(details or {})

    def to_operation_error(self) -> OperationError:
        return OperationError(
            kind=self.kind,
            code=self.code,
            message=self.message,
            errors=[_plain(e) for e in self.errors],
            warnings=[_plain(w) for w in self.warnings],
            details=self.details,
        )


def _plain(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return value


class NotFound(LifecycleError):
    kind = "NotFound"
    default_code = "NOT_FOUND"


class InvalidTransition(LifecycleError):
    kind = "InvalidTransition"
    default_code = "INVALID_TRANSITION"


class ValidationFailed(LifecycleError):
    kind = "ValidationFailed"
    default_code = "VALIDATION_FAILED"


class PermissionDenied(LifecycleError):
    kind = "PermissionDenied"
    default_code = "PERMISSION_DENIED"


class ConflictError(LifecycleError):
    kind = "ConflictError"
    default_code = "CONFLICT"


class AuditWriteFailed(LifecycleError):
    kind = "AuditWriteFailed"
    default_code = "AUDIT_WRITE_FAILED"


class TransportError(LifecycleError):
    kind = "TransportError"
    default_code = "TRANSPORT_ERROR"
