"""
Ingestion — text extraction, chunking, and embedding.

These are the leaf steps the processing state machine chains together to
turn an uploaded file into vector records.
"""
