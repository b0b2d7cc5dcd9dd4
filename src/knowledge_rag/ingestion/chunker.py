"""Text chunking — bounded, boundary-aware, overlapping windows."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def _find_break(text: str, start: int, end: int, min_break: int) -> int | None:
    """Return the best cut position inside ``text[start:end]`` or ``None``.

    Priority: after the last ``.``, then at the last newline, then at the
    last space.  A candidate is only accepted past *min_break*.
    """
    period = text.rfind(".", start, end)
    if period > min_break:
        return period + 1
    newline = text.rfind("\n", start, end)
    if newline > min_break:
        return newline
    space = text.rfind(" ", start, end)
    if space > min_break:
        return space
    return None


def chunk_text(text: str, max_size: int = 1000, overlap: int = 200) -> list[str]:
    """Split *text* into ordered, non-empty chunks of at most *max_size* chars.

    Parameters
    ----------
    text:
        Extracted document text.
    max_size:
        Maximum number of characters per chunk.
    overlap:
        Characters of the previous window repeated at the start of the next
        one.  The window start always moves forward by at least one
        character.

    Returns
    -------
    list[str]
        Trimmed chunks in document order; empty for blank input.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if overlap < 0 or overlap >= max_size:
        raise ValueError(f"overlap ({overlap}) must be >= 0 and < max_size ({max_size})")

    if not text or not text.strip():
        return []

    text = text.strip()
    if len(text) <= max_size:
        return [text]

    chunks: list[str] = []
    length = len(text)
    start = 0
    while start < length:
        end = min(start + max_size, length)
        if end < length:
            cut = _find_break(text, start, end, start + max_size // 2)
            if cut is not None:
                end = cut

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)

        if end >= length:
            break
        start = max(end - overlap, start + 1)

    logger.debug("Split %d chars into %d chunks (max_size=%d, overlap=%d)", length, len(chunks), max_size, overlap)
    return chunks


def batched(items: list[str], batch_size: int) -> list[tuple[int, list[str]]]:
    """Partition *items* into ``(start_index, batch)`` pairs."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [(i, items[i : i + batch_size]) for i in range(0, len(items), batch_size)]
