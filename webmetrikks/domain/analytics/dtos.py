"""DTOs for aggregated views over LogStats."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SummaryData:
    """Hits, files, pages, bytes, visits and sites for one period.

    ``category`` is the display label of the period, e.g. ``"Jan"`` for a
    month or ``"Jan 2"`` for a day.
    """

    category: str
    hits: int = 0
    files: int = 0
    pages: int = 0
    bytes: int = 0
    visits: int = 0
    sites: int = 0

    def add(self, other: "SummaryData") -> None:
        """Add another period's counters to this one."""
        self.hits += other.hits
        self.files += other.files
        self.pages += other.pages
        self.bytes += other.bytes
        self.visits += other.visits
        self.sites += other.sites


@dataclass
class CategoryData:
    """A category and its count, e.g. a method, response code or country."""

    category: str
    count: int
