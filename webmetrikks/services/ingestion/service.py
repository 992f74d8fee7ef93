"""Log ingestion service - runs the parse, accumulate and enrich pipeline.

Records stream from LogParser into a LogStats accumulator one at a time.
Once the file is exhausted the visitor addresses are enriched with their
countries through CountryLookup.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from webmetrikks.domain.analytics.models import LogStats
from webmetrikks.services.countrycache.service import (
    DEFAULT_WORKERS,
    UNKNOWN_COUNTRY,
    CountryLookup,
)
from webmetrikks.domain.analytics.constants import PAGE_EXTENSIONS, VISIT_TIMEOUT_SECONDS
from webmetrikks.services.logparser.logparser import LogParser

if TYPE_CHECKING:
    from webmetrikks.config.settings import Settings


logger = logging.getLogger(__name__)


class LogIngestionService:
    """Runs one batch over a finite access log.

    Example:
        service = LogIngestionService(
            parser=parser,
            geoip_path=Path("GeoLite2-Country.mmdb"),
            locales=["en"],
        )
        stats = await service.run()
    """

    def __init__(
        self,
        parser: LogParser,
        geoip_path: Path | str | None = None,
        locales: list[str] | None = None,
        *,
        enrich: bool = True,
        num_workers: int = DEFAULT_WORKERS,
        fallback_country: str = UNKNOWN_COUNTRY,
        visit_timeout: float = VISIT_TIMEOUT_SECONDS,
        page_extensions: list[str] | None = None,
        page_prefixes: list[str] | None = None,
    ) -> None:
        """Configure one batch run.

        Args:
            parser: Reads and parses the access log.
            geoip_path: GeoIP2 database file path. Required when enrich is True.
            locales: GeoIP locales for country names.
            enrich: If True, resolve visitor countries after parsing.
            num_workers: Number of concurrent country lookup workers.
            fallback_country: Country recorded for unresolvable addresses.
            visit_timeout: Seconds of inactivity that end a visit.
            page_extensions: Extensions that classify a hit as a page.
            page_prefixes: URL prefixes that classify a hit as a page.
        """
        if enrich and geoip_path is None:
            raise ValueError("geoip_path is required when enrich is enabled")
        self.parser: LogParser = parser
        self.geoip_path: Path | str | None = geoip_path
        self.locales: list[str] | None = locales
        self.enrich: bool = enrich
        self.num_workers: int = num_workers
        self.fallback_country: str = fallback_country
        self.visit_timeout: float = visit_timeout
        self.page_extensions: list[str] = page_extensions if page_extensions is not None else list(PAGE_EXTENSIONS)
        self.page_prefixes: list[str] = page_prefixes or []

        self.total_processed: int = 0
        self.total_visits: int = 0

    @classmethod
    def from_settings(cls, settings: "Settings", parser: LogParser | None = None) -> "LogIngestionService":
        """Build the service (and parser, unless given) from application settings."""
        return cls(
            parser=parser or LogParser(log_path=settings.logparser.log_path),
            geoip_path=settings.geoip.db_path,
            locales=settings.geoip.locales,
            enrich=settings.geoip.enabled,
            num_workers=settings.geoip.workers,
            fallback_country=settings.geoip.fallback_country,
            visit_timeout=settings.logparser.visit_timeout,
            page_extensions=settings.logparser.page_extensions,
            page_prefixes=settings.logparser.page_prefixes,
        )

    def new_stats(self) -> LogStats:
        """Create an empty accumulator with this service's configuration."""
        return LogStats.from_settings(
            visit_timeout=self.visit_timeout,
            page_extensions=self.page_extensions,
            page_prefixes=self.page_prefixes,
        )

    async def run(self) -> LogStats:
        """Parse the whole log, then enrich the stats with visitor countries.

        Raises:
            FileNotFoundError: If the log file does not exist.
            EnrichmentSetupError: If the GeoIP database cannot be opened.
        """
        if not await asyncio.to_thread(self.parser.log_file_exists):
            raise FileNotFoundError(f"Log file does not exist: {self.parser.log_path}")

        stats = await self.accumulate()
        if self.enrich:
            await self.enrich_countries(stats)
        return stats

    async def accumulate(self) -> LogStats:
        """Fold every parsed record into a fresh accumulator, in file order."""
        started = time.monotonic()
        stats = self.new_stats()
        async for record in self.parser.iter_parsed_records():
            if stats.add_record(record):
                self.total_visits += 1
            self.total_processed += 1

        logger.info(
            "Accumulated %d records (%d visits, %d days) in %.2fs",
            self.total_processed,
            self.total_visits,
            len(stats.hits),
            time.monotonic() - started,
        )
        return stats

    async def enrich_countries(self, stats: LogStats) -> None:
        """Resolve every visitor's country and merge visits per country into stats.

        The GeoIP reader is opened for this batch only and always closed.
        """
        with CountryLookup.open(
            self.geoip_path,
            self.locales,
            num_workers=self.num_workers,
            fallback_country=self.fallback_country,
        ) as countries:
            await countries.parallel_lookup(stats.unique_visitors())
            stats.merge_countries(countries.lookup)

    @property
    def parsed_lines(self) -> int:
        """Lines the parser turned into records."""
        return self.parser.parsed_lines

    @property
    def skipped_lines(self) -> int:
        """Malformed lines the parser dropped."""
        return self.parser.skipped_lines
