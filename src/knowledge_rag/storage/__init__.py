"""Storage — raw file blobs and document status records."""
