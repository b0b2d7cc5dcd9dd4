"""
Processing — the queue-driven state machine that turns uploaded files into
indexed vectors.

Public surface
--------------
- :class:`DocumentStatus`, :data:`TRANSITIONS`, :func:`decide_failure` — states and policy.
- :class:`DocumentProcessor` — runs one attempt and applies the decision.
- :class:`WorkerPool` — bounded pool of parallel queue consumers.
"""

from knowledge_rag.processing.states import TRANSITIONS, DocumentStatus, FailureDecision, decide_failure

__all__ = [
    "DocumentProcessor",
    "DocumentStatus",
    "FailureDecision",
    "ProcessingOutcome",
    "TRANSITIONS",
    "WorkerPool",
    "decide_failure",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import processor and worker; they depend on ``knowledge_rag.models``."""
    if name in ("DocumentProcessor", "ProcessingOutcome"):
        from knowledge_rag.processing import processor

        return getattr(processor, name)
    if name == "WorkerPool":
        from knowledge_rag.processing.worker import WorkerPool

        return WorkerPool
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
