"""Error taxonomy shared by ingestion, processing and retrieval.

The processing state machine classifies failures by type rather than by
message: :class:`ValidationError` and :class:`NotFoundError` are permanent,
everything else is treated as transient and goes through the retry budget.
"""

from __future__ import annotations


class KnowledgeError(Exception):
    """Base class for all errors raised by this package.

    Parameters
    ----------
    message:
        Human-readable description.
    code:
        Stable machine-readable code, e.g. ``"FILE_NOT_FOUND"``.
    """

    default_code = "KNOWLEDGE_ERROR"
    retryable = False

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ValidationError(KnowledgeError):
    """Malformed input: bad path, unsupported format, empty content."""

    default_code = "VALIDATION_ERROR"


class NotFoundError(KnowledgeError):
    """A referenced file, object or document does not exist."""

    default_code = "NOT_FOUND"


class TransientIOError(KnowledgeError):
    """Timeout or network failure against a collaborator."""

    default_code = "TRANSIENT_IO"
    retryable = True


class ExhaustedRetriesError(KnowledgeError):
    """The retry budget is spent; the document is terminally failed."""

    default_code = "RETRIES_EXHAUSTED"

    def __init__(self, doc_id: str, attempts: int, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Document {doc_id} failed after {attempts} retries: {cause}",
        )
        self.doc_id = doc_id
        self.attempts = attempts
        self.cause = cause


class ConcurrencyConflict(KnowledgeError):
    """Two writers raced for the same key or record."""

    default_code = "CONCURRENCY_CONFLICT"


class InvalidTransition(ConcurrencyConflict):
    """A status change that the transition table does not allow."""

    default_code = "INVALID_TRANSITION"

    def __init__(self, doc_id: str, current: str, requested: str) -> None:
        super().__init__(f"Document {doc_id}: cannot move from {current!r} to {requested!r}")
        self.doc_id = doc_id
        self.current = current
        self.requested = requested


def is_permanent(error: BaseException) -> bool:
    """Return ``True`` for failures that must not be retried."""
    return isinstance(error, (ValidationError, NotFoundError))
