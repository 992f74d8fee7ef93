"""In-memory statistics accumulated from an access log."""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from webmetrikks.domain.analytics.constants import PAGE_EXTENSIONS, VISIT_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from webmetrikks.services.logparser.schemas import LogRecord

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

# Country lookup used by the merge step: address -> (country, found)
CountryLookupFn = Callable[[str], tuple[str, bool]]


@dataclass
class HitsBytes:
    """Hits and bytes transferred for one entity."""

    hits: int = 0
    bytes: int = 0

    def add_traffic(self, bytes_sent: int) -> None:
        """Count one hit of the given size."""
        self.hits += 1
        self.bytes += bytes_sent


@dataclass
class HitsBytesVisits:
    """Hits, bytes transferred and visits for one entity."""

    hits: int = 0
    bytes: int = 0
    visits: int = 0

    def add_traffic(self, bytes_sent: int, is_new_visit: bool) -> None:
        """Count one hit of the given size, and a visit if it opened one."""
        self.hits += 1
        self.bytes += bytes_sent
        if is_new_visit:
            self.visits += 1


def _nested(mapping: dict[str, dict[K, V]], day: str) -> dict[K, V]:
    """Get or create the per-day submap."""
    submap = mapping.get(day)
    if submap is None:
        submap = mapping[day] = {}
    return submap


def _increment(mapping: dict[K, int], key: K, amount: int = 1) -> None:
    mapping[key] = mapping.get(key, 0) + amount


def _get_or_create(mapping: dict[K, V], key: K, factory: Callable[[], V]) -> V:
    value = mapping.get(key)
    if value is None:
        value = mapping[key] = factory()
    return value


@dataclass
class LogStats:
    """Time-bucketed usage statistics, keyed by day (YYYY-MM-DD).

    Records are folded in one at a time via :meth:`add_record`, in log
    order. Visit detection relies on each address's hits arriving in
    non-decreasing timestamp order.

    Consumers should read through
    :class:`~webmetrikks.services.aggregation.AggregationService` rather than
    the maps directly.

    Example:
        stats = LogStats()
        for record in parser.parse_lines(lines):
            stats.add_record(record)
        stats.merge_countries(country_lookup.lookup)
    """

    visit_timeout: timedelta = field(default=timedelta(seconds=VISIT_TIMEOUT_SECONDS))
    page_extensions: frozenset[str] = field(default=frozenset(PAGE_EXTENSIONS))
    page_prefixes: tuple[str, ...] = ()

    hits: dict[str, int] = field(default_factory=dict)
    files: dict[str, int] = field(default_factory=dict)
    pages: dict[str, int] = field(default_factory=dict)
    bytes: dict[str, int] = field(default_factory=dict)
    visits: dict[str, dict[str, int]] = field(default_factory=dict)
    sites: dict[str, dict[str, int]] = field(default_factory=dict)
    methods: dict[str, dict[str, int]] = field(default_factory=dict)
    response_codes: dict[str, dict[int, int]] = field(default_factory=dict)
    ips: dict[str, dict[str, HitsBytesVisits]] = field(default_factory=dict)
    user_agents: dict[str, dict[str, HitsBytesVisits]] = field(default_factory=dict)
    url_paths: dict[str, dict[str, dict[str, HitsBytes]]] = field(default_factory=dict)
    referrers: dict[str, dict[str, HitsBytes]] = field(default_factory=dict)
    # Populated by merge_countries() after enrichment
    country_visits: dict[str, dict[str, int]] = field(default_factory=dict)

    # Session tracking across the whole run, not bucketed by day
    _first_visit: dict[str, datetime] = field(default_factory=dict, repr=False)
    _last_visit: dict[str, datetime] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.page_extensions = frozenset(ext.lower().lstrip(".") for ext in self.page_extensions)
        self.page_prefixes = tuple(self.page_prefixes)

    @classmethod
    def from_settings(
        cls,
        visit_timeout: float,
        page_extensions: Iterable[str],
        page_prefixes: Iterable[str] = (),
    ) -> "LogStats":
        """Create an empty accumulator from configuration values."""
        return cls(
            visit_timeout=timedelta(seconds=visit_timeout),
            page_extensions=frozenset(page_extensions),
            page_prefixes=tuple(page_prefixes),
        )

    def is_page(self, url: str) -> bool:
        """Classify a URL path as a page by its file extension or a configured prefix."""
        path = url.split("?", 1)[0].split("#", 1)[0]
        extension = posixpath.splitext(posixpath.basename(path))[1]
        if extension and extension[1:].lower() in self.page_extensions:
            return True
        return any(path.startswith(prefix) for prefix in self.page_prefixes)

    def _is_new_visit(self, ip_address: str, timestamp: datetime) -> bool:
        """Check the session timeout and record the hit time for the address."""
        last = self._last_visit.get(ip_address)
        if last is None:
            self._first_visit[ip_address] = timestamp
            is_new = True
        else:
            if timestamp < last:
                logger.debug("Out of order hit from %s: %s < %s", ip_address, timestamp, last)
            is_new = timestamp - last > self.visit_timeout
        self._last_visit[ip_address] = timestamp
        return is_new

    def add_record(self, record: "LogRecord") -> bool:
        """Fold one parsed log record into every per-day metric.

        Args:
            record: The parsed log line.

        Returns:
            True if this hit opened a new visit for its address.
        """
        day = record.day
        size = record.bytes_sent

        # HITS: every parsed line is a hit
        _increment(self.hits, day)

        # FILES: successful responses
        if record.status_code == 200:
            _increment(self.files, day)

        # PAGES
        if self.is_page(record.url):
            _increment(self.pages, day)

        # BYTES
        _increment(self.bytes, day, size)

        # VISITS
        is_new_visit = self._is_new_visit(record.ip_address, record.timestamp)
        if is_new_visit:
            _increment(_nested(self.visits, day), record.ip_address)

        # SITES: distinct addresses per day are the keys
        _increment(_nested(self.sites, day), record.ip_address)

        _increment(_nested(self.methods, day), record.method)
        _increment(_nested(self.response_codes, day), record.status_code)

        _get_or_create(_nested(self.ips, day), record.ip_address, HitsBytesVisits).add_traffic(size, is_new_visit)
        _get_or_create(_nested(self.user_agents, day), record.user_agent, HitsBytesVisits).add_traffic(size, is_new_visit)

        methods = _get_or_create(_nested(self.url_paths, day), record.url, dict)
        _get_or_create(methods, record.method, HitsBytes).add_traffic(size)
        _get_or_create(_nested(self.referrers, day), record.referrer, HitsBytes).add_traffic(size)

        return is_new_visit

    def days(self) -> list[str]:
        """Return every day key with at least one hit, in chronological order."""
        return sorted(self.hits)

    def unique_visitors(self) -> list[str]:
        """Return the distinct visitor addresses seen on any day."""
        seen: set[str] = set()
        for visitors in self.visits.values():
            seen.update(visitors)
        return sorted(seen)

    def first_seen(self, ip_address: str) -> datetime | None:
        """Timestamp of the first hit from an address."""
        return self._first_visit.get(ip_address)

    def last_seen(self, ip_address: str) -> datetime | None:
        """Timestamp of the latest hit from an address."""
        return self._last_visit.get(ip_address)

    def merge_countries(self, lookup: CountryLookupFn) -> None:
        """Rebuild the per-day country visit counts from the per-address visits.

        Addresses the lookup cannot place are left out of the country
        breakdown only; their visits remain in every other metric.

        Args:
            lookup: Callable returning (country, found) for an address.
        """
        country_visits: dict[str, dict[str, int]] = {}
        skipped = 0
        for day, visitors in self.visits.items():
            for ip_address, count in visitors.items():
                country, found = lookup(ip_address)
                if not found:
                    skipped += 1
                    continue
                _increment(_nested(country_visits, day), country, count)
        self.country_visits = country_visits
        if skipped:
            logger.debug("Left %d unresolved (day, address) pairs out of country visits", skipped)
