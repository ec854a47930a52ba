"""Typed errors raised by the inventory core."""

from __future__ import annotations

from typing import Any, Optional


class StockroomError(Exception):
    """Base class for all inventory core errors."""

    default_message = "Inventory operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        error = {"error": self.__class__.__name__, "message": self.message}
        if self.code:
            error["code"] = self.code
        if self.details:
            error["details"] = self.details
        return error


class ValidationFailed(StockroomError):
    """User-correctable rejection, raised before anything is written."""

    default_message = "Validation failed"


class NotFound(ValidationFailed):
    """A referenced record does not resolve."""

    default_message = "Record not found"

    def __init__(self, kind: str, record_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{kind} not found: {record_id}",
            code="NOT_FOUND",
            details={"kind": kind, "id": record_id},
        )
        self.kind = kind
        self.record_id = record_id


class SubmissionInProgress(ValidationFailed):
    default_message = "Another stock movement is still being saved"


class PermissionDenied(StockroomError):
    default_message = "Not allowed for this role"


class PersistenceFailed(StockroomError):
    """The atomic write did not complete; the store is in the pre-state."""

    default_message = "Failed to save changes, please retry"


class OutcomeUnknown(PersistenceFailed):
    """The store did not answer in time; the write may or may not have landed."""

    default_message = (
        "The store did not confirm the write. Re-check stock levels before retrying"
    )


class ConditionFailed(StockroomError):
    """A conditional write inside a batch was rejected by the store.

    ``failed_keys`` lists ``(collection, id)`` pairs whose condition did not
    hold, when the backend reports them.
    """

    default_message = "Write condition not met"

    def __init__(
        self,
        message: Optional[str] = None,
        failed_keys: Optional[list[tuple[str, str]]] = None,
    ):
        super().__init__(message, code="CONDITION_FAILED")
        self.failed_keys = failed_keys or []
