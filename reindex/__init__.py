"""Zero-downtime reindexing pipeline for a Qdrant-backed search index."""

__version__ = "0.1.0"
