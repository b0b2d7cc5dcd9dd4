"""
Generation — grounded answers from retrieved chunks.

Public surface
--------------
- :func:`get_llm` (in :mod:`knowledge_rag.generation.llm`) — configured chat model.
- :func:`build_answer_prompt`, :data:`NO_CONTEXT_ANSWER` — prompt construction.
"""
