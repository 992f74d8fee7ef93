"""Log parser module - parsing only, no aggregation."""
from .logparser import LogParser, MalformedLineError
from .schemas import LogRecord

__all__ = ["LogParser", "LogRecord", "MalformedLineError"]
