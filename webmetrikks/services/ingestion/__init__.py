"""Ingestion module - batch pipeline from log file to enriched stats."""
from .service import LogIngestionService

__all__ = ["LogIngestionService"]
