"""Error taxonomy for the reconciliation engine."""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class for every error raised by the engine."""

    code: str = "RECONCILIATION_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ParseError(ReconciliationError):
    """A raw import row could not be read at all."""

    code = "PARSE_ERROR"

    def __init__(
        self,
        message: str,
        row: Optional[int] = None,
        field: Optional[str] = None,
        value: Any = None,
    ):
        super().__init__(message, row=row, field=field, value=value)
        self.row = row
        self.field = field
        self.value = value


class ValidationError(ReconciliationError):
    """A field or operation input has an unacceptable value."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        row: Optional[int] = None,
        field: Optional[str] = None,
        value: Any = None,
    ):
        super().__init__(message, row=row, field=field, value=value)
        self.row = row
        self.field = field
        self.value = value


class ConflictError(ReconciliationError):
    """
    Optimistic-concurrency collision.

    The entry was claimed or the transaction was modified after it was read.
    Callers may retry after refetching state.
    """

    code = "CONFLICT"


class InvalidStateError(ReconciliationError):
    """The operation is not permitted from the transaction's current status."""

    code = "INVALID_STATE"


class NotFoundError(ReconciliationError):
    """Unknown transaction or journal entry id."""

    code = "NOT_FOUND"
