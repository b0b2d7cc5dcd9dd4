"""Prompt templates for answering questions over retrieved chunks."""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from knowledge_rag.retrieval.models import ContextChunk

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on the provided context. "
    "If the answer cannot be found in the context, say so clearly."
)

NO_CONTEXT_ANSWER = (
    "I couldn't find relevant information in your knowledge base to answer this question. "
    "Please try rephrasing your question or check if the content has been properly uploaded."
)


def join_context(chunks: list[ContextChunk]) -> str:
    """Concatenate chunk texts in ranking order, separated by blank lines."""
    return "\n\n".join(chunk.text for chunk in chunks)


def build_answer_prompt(question: str, chunks: list[ContextChunk]) -> list[BaseMessage]:
    """Messages for a single grounded answer."""
    return [
        SystemMessage(content=SYSTEM_PROMPT),
        HumanMessage(content=f"Context: {join_context(chunks)}\n\nQuestion: {question}"),
    ]
