"""Document status values, the transition table and the failure policy.

Retries are expressed as data: :func:`decide_failure` maps an error and the
current ``retry_count`` to a :class:`FailureDecision`, and the processor
applies it.  No exception is used as a signal to the queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from knowledge_rag.errors import is_permanent


class DocumentStatus(str, Enum):
    """Externally visible status strings."""

    UPLOADING = "uploading"
    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


# completed/failed -> pending is only issued by manual resubmission.
TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.UPLOADING: frozenset({DocumentStatus.PENDING, DocumentStatus.FAILED}),
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING, DocumentStatus.FAILED}),
    DocumentStatus.PROCESSING: frozenset(
        {
            DocumentStatus.PROCESSING,
            DocumentStatus.COMPLETED,
            DocumentStatus.RETRYING,
            DocumentStatus.FAILED,
        }
    ),
    DocumentStatus.RETRYING: frozenset({DocumentStatus.PROCESSING, DocumentStatus.FAILED}),
    DocumentStatus.COMPLETED: frozenset({DocumentStatus.PENDING}),
    DocumentStatus.FAILED: frozenset({DocumentStatus.PENDING}),
    DocumentStatus.NOT_FOUND: frozenset(),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Return ``True`` when *current* → *target* is allowed."""
    return target in TRANSITIONS.get(current, frozenset())


def is_noop(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Repeated terminal writes (e.g. two copies both completing) are no-ops."""
    return current == target and current.is_terminal


def retry_delay_seconds(retry_count: int, base_delay: int) -> int:
    """Exponential backoff: ``base_delay * 2 ** retry_count``."""
    return base_delay * (2**retry_count)


@dataclass(frozen=True)
class FailureDecision:
    """What to do with a message whose processing attempt failed.

    Attributes
    ----------
    status:
        Either ``RETRYING`` or ``FAILED``.
    next_retry_count:
        ``retry_count`` of the re-enqueued message (``None`` when failed).
    delay_seconds:
        Re-delivery delay (``None`` when failed).
    exhausted:
        ``True`` when the document failed because the budget ran out.
    """

    status: DocumentStatus
    next_retry_count: int | None = None
    delay_seconds: int | None = None
    exhausted: bool = False

    @property
    def should_retry(self) -> bool:
        return self.status is DocumentStatus.RETRYING


def decide_failure(
    retry_count: int,
    error: BaseException,
    *,
    max_retries: int,
    base_delay: int,
) -> FailureDecision:
    """Map a failed attempt to the next state."""
    if is_permanent(error):
        return FailureDecision(status=DocumentStatus.FAILED)
    if retry_count < max_retries:
        return FailureDecision(
            status=DocumentStatus.RETRYING,
            next_retry_count=retry_count + 1,
            delay_seconds=retry_delay_seconds(retry_count, base_delay),
        )
    return FailureDecision(status=DocumentStatus.FAILED, exhausted=True)
