"""Concurrent visitor country lookup backed by a MaxMind GeoIP2 database.

Addresses are resolved by a fixed pool of worker tasks feeding a single
collector, which is the only writer of the cache. Once
:meth:`CountryLookup.parallel_lookup` returns the cache is complete and
read-only.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType
from typing import Protocol

from geoip2.database import Reader
from IPy import IP

from webmetrikks.services.logparser.constants import (
    ALLOWED_GEOIP_LOCALES,
    GEOIP_LOCALES_DEFAULT,
    UNROUTABLE_IP_TYPES,
)

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 32
UNKNOWN_COUNTRY = "Unknown"


class EnrichmentSetupError(RuntimeError):
    """Raised when the GeoIP database cannot be opened."""


class CountryReader(Protocol):
    """The part of ``geoip2.database.Reader`` used for country lookups."""

    def country(self, ip_address: str): ...

    def close(self) -> None: ...


def create_reader(path: Path | str, locales: list[str] | None = None) -> Reader:
    """Create a GeoIP2 Reader instance.

    Raises:
        EnrichmentSetupError: If the database cannot be opened.
    """
    if any(loc not in ALLOWED_GEOIP_LOCALES for loc in locales or []):
        logger.warning(
            "Unmatched GeoIp2 locale found. Allowed are '%s', defaulting to 'en'",
            ALLOWED_GEOIP_LOCALES,
        )
        locales = GEOIP_LOCALES_DEFAULT
    try:
        return Reader(path, locales=locales)
    except Exception as e:
        logger.exception("Failed to create GeoIP2 Reader for path: %s", path)
        raise EnrichmentSetupError(f"Cannot open GeoIP database {path}: {e}") from e


def is_ip_literal(address: str) -> bool:
    """Return True if the address is a numeric IPv4/IPv6 address."""
    try:
        IP(address)
    except (ValueError, TypeError):
        return False
    return True


class CountryLookup:
    """Resolves visitor addresses (IPs or hostnames) to country names.

    Example:
        with CountryLookup.open(db_path, ["en"], num_workers=32) as countries:
            await countries.parallel_lookup(stats.unique_visitors())
            stats.merge_countries(countries.lookup)
    """

    def __init__(
        self,
        reader: CountryReader,
        *,
        num_workers: int = DEFAULT_WORKERS,
        fallback_country: str = UNKNOWN_COUNTRY,
    ) -> None:
        """Initialize the lookup cache.

        Args:
            reader: Open GeoIP2 reader; closed by :meth:`close`.
            num_workers: Number of concurrent lookup workers.
            fallback_country: Country stored for addresses that fail to resolve.
        """
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        self.reader = reader
        self.num_workers = num_workers
        self.fallback_country = fallback_country

        self._countries: dict[str, str] = {}
        self._lock = threading.Lock()
        self._closed = False

        # Statistics
        self.resolved: int = 0
        self.failed: int = 0

    @classmethod
    def open(
        cls,
        db_path: Path | str,
        locales: list[str] | None = None,
        *,
        num_workers: int = DEFAULT_WORKERS,
        fallback_country: str = UNKNOWN_COUNTRY,
    ) -> "CountryLookup":
        """Open the GeoIP database at ``db_path`` and wrap it in a lookup cache."""
        reader = create_reader(db_path, locales)
        try:
            return cls(reader, num_workers=num_workers, fallback_country=fallback_country)
        except Exception:
            reader.close()
            raise

    def close(self) -> None:
        """Close the underlying GeoIP2 reader."""
        if self._closed:
            return
        self._closed = True
        self.reader.close()
        logger.debug("Closed GeoIP2 reader")

    def __enter__(self) -> "CountryLookup":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._countries)

    @property
    def countries(self) -> dict[str, str]:
        """Return a copy of the resolved address to country mapping."""
        with self._lock:
            return dict(self._countries)

    async def resolve_address(self, visitor: str) -> str:
        """Return the IP address for a visitor, resolving hostnames via DNS."""
        if is_ip_literal(visitor):
            return visitor
        infos = await asyncio.get_running_loop().getaddrinfo(visitor, None)
        if not infos:
            raise LookupError(f"No addresses found for {visitor}")
        return str(infos[0][4][0])

    async def lookup_country(self, visitor: str) -> str:
        """Look up the country of a single visitor.

        Raises:
            Exception: Any resolution or database error; callers fall back.
        """
        ip_address = await self.resolve_address(visitor)
        ip_type = IP(ip_address).iptype()
        if ip_type in UNROUTABLE_IP_TYPES:
            raise LookupError(f"{ip_address} is a {ip_type} address")
        response = await asyncio.to_thread(self.reader.country, ip_address)
        if not response.country.name:
            raise LookupError(f"No country recorded for {ip_address}")
        return response.country.name

    async def _worker(
        self,
        work_queue: "asyncio.Queue[str | None]",
        result_queue: "asyncio.Queue[tuple[str, str] | None]",
    ) -> None:
        """Resolve visitors from the work queue until the stop marker."""
        while (visitor := await work_queue.get()) is not None:
            try:
                country = await self.lookup_country(visitor)
            except Exception as e:
                logger.warning("Country lookup failed for %s: %s", visitor, e)
                country = self.fallback_country
            result_queue.put_nowait((visitor, country))

    async def _collect(self, result_queue: "asyncio.Queue[tuple[str, str] | None]") -> None:
        """Drain results into the cache until the result queue is closed."""
        while (result := await result_queue.get()) is not None:
            visitor, country = result
            with self._lock:
                self._countries[visitor] = country
            if country == self.fallback_country:
                self.failed += 1
            else:
                self.resolved += 1

    async def parallel_lookup(self, visitors: Iterable[str]) -> None:
        """Look up the countries of all visitors concurrently.

        Returns only after every result has been written to the cache.

        Args:
            visitors: Visitor IPs or hostnames; duplicates are looked up once.
        """
        pending = list(dict.fromkeys(visitors))
        logger.info("Looking up visitors (count=%d)", len(pending))
        if not pending:
            return

        num_workers = min(self.num_workers, len(pending))
        work_queue: asyncio.Queue[str | None] = asyncio.Queue()
        # Room for every result plus the closing marker, so workers never block
        result_queue: asyncio.Queue[tuple[str, str] | None] = asyncio.Queue(maxsize=len(pending) + 1)

        for visitor in pending:
            work_queue.put_nowait(visitor)
        # All work is queued; one stop marker per worker closes the queue
        for _ in range(num_workers):
            work_queue.put_nowait(None)

        collector = asyncio.create_task(self._collect(result_queue), name="country-collector")
        workers = [
            asyncio.create_task(self._worker(work_queue, result_queue), name=f"country-lookup-{i}")
            for i in range(num_workers)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                task.cancel()
            # Every worker is done; close the result queue and wait for the collector
            await result_queue.put(None)
            await collector

        logger.info(
            "Country lookup finished: %d resolved, %d failed",
            self.resolved,
            self.failed,
        )

    def lookup(self, visitor: str) -> tuple[str, bool]:
        """Return the country of a visitor and whether it was resolved.

        Only valid after :meth:`parallel_lookup` has returned. Visitors that
        were never looked up, or fell back to the fallback country, report
        ``found=False``.
        """
        with self._lock:
            country = self._countries.get(visitor)
        if country is None:
            return "", False
        if country == self.fallback_country:
            return country, False
        return country, True
