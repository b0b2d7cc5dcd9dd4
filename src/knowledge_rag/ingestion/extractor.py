"""Text extraction — thin wrappers around LangChain document loaders."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from langchain_community.document_loaders import PyPDFLoader, TextLoader

from knowledge_rag.errors import TransientIOError, ValidationError

if TYPE_CHECKING:
    from langchain_core.documents import Document

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({".txt", ".md", ".pdf"})


def check_extension(filename: str) -> str:
    """Return the lower-cased suffix of *filename* or raise ``ValidationError``."""
    suffix = Path(filename).suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ValidationError(
            f"Unsupported file type {suffix or '<none>'!r}. Only .txt, .pdf, and .md files are allowed",
            code="UNSUPPORTED_FILE_TYPE",
        )
    return suffix


def load_documents(path: str | Path) -> list[Document]:
    """Load *path* with the loader matching its extension."""
    suffix = check_extension(str(path))
    if suffix == ".pdf":
        return PyPDFLoader(str(path)).load()
    return TextLoader(str(path), encoding="utf-8", autodetect_encoding=True).load()


class TextExtractor:
    """Turns a file on disk into a single plain-text string.

    Parameters
    ----------
    max_file_bytes:
        Files larger than this are rejected before parsing.
    """

    def __init__(self, max_file_bytes: int = 10 * 1024 * 1024) -> None:
        self.max_file_bytes = max_file_bytes

    def extract(self, path: str | Path) -> str:
        """Extract text from *path*.

        Raises
        ------
        ValidationError
            Empty file, oversize file, unsupported type, unparsable content
            or no text found.
        TransientIOError
            The file could not be read from local storage.
        """
        path = Path(path)
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise TransientIOError(f"Cannot stat {path.name}: {exc}") from exc

        if size == 0:
            raise ValidationError("File is empty", code="EMPTY_FILE")
        if size > self.max_file_bytes:
            raise ValidationError(
                f"File size {size} exceeds limit of {self.max_file_bytes} bytes",
                code="FILE_TOO_LARGE",
            )

        try:
            documents = load_documents(path)
        except ValidationError:
            raise
        except OSError as exc:
            raise TransientIOError(f"Cannot read {path.name}: {exc}") from exc
        except Exception as exc:
            raise ValidationError(
                f"Failed to extract text from {path.name}: {exc}",
                code="EXTRACTION_FAILED",
            ) from exc

        text = "\n".join(doc.page_content for doc in documents).strip()
        if not text:
            raise ValidationError("No text content found in file", code="NO_TEXT")

        logger.info("Extracted %d characters from %s (%d parts)", len(text), path.name, len(documents))
        return text
