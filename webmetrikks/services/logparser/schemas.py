"""Schemas for parsed log data - pure data, no aggregation logic."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .constants import DAY_KEY_FORMAT


@dataclass(frozen=True)
class LogRecord:
    """One parsed access log line.

    Created by the parser for every valid line and folded into the
    statistics straight away; records are never retained.
    """

    ip_address: str
    timestamp: datetime
    method: str
    url: str
    http_version: str
    status_code: int
    bytes_sent: int
    referrer: str
    user_agent: str

    @property
    def day(self) -> str:
        """Day key (YYYY-MM-DD) in the record's own UTC offset."""
        return self.timestamp.strftime(DAY_KEY_FORMAT)
