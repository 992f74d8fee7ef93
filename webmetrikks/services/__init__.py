"""Services layer - parsing, country enrichment and aggregation."""
from .logparser import LogParser

__all__ = ["LogParser"]
