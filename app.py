from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv

from webmetrikks.config.logging import configure_logging
from webmetrikks.config.settings import get_settings
from webmetrikks.domain.analytics.models import LogStats
from webmetrikks.services.aggregation import AggregationService
from webmetrikks.services.countrycache import EnrichmentSetupError
from webmetrikks.services.ingestion import LogIngestionService

load_dotenv()

logger = logging.getLogger("webmetrikks")


def log_summary(stats: LogStats) -> None:
    """Log the monthly usage summary and the trailing-month breakdowns."""
    views = AggregationService(stats)
    for month, data in sorted(views.aggregates_by_month().items()):
        logger.info(
            "%s (%s): hits=%d files=%d pages=%d visits=%d sites=%d bytes=%d",
            data.category, month, data.hits, data.files, data.pages, data.visits, data.sites, data.bytes,
        )
    for data in views.recent_aggregates().values():
        logger.info(
            "%s: hits=%d files=%d pages=%d visits=%d sites=%d bytes=%d",
            data.category, data.hits, data.files, data.pages, data.visits, data.sites, data.bytes,
        )
    methods, responses = views.method_response_aggregates()
    logger.info("Methods: %s", ", ".join(f"{c.category}={c.count}" for c in views.ranked(methods)))
    logger.info("Responses: %s", ", ".join(f"{c.category}={c.count}" for c in views.ranked(responses)))
    countries = views.ranked(views.country_aggregates(), limit=10)
    if countries:
        logger.info("Top countries: %s", ", ".join(f"{c.category}={c.count}" for c in countries))


def main() -> int:
    settings = get_settings()
    configure_logging(settings)
    service = LogIngestionService.from_settings(settings)
    try:
        stats = asyncio.run(service.run())
    except (OSError, EnrichmentSetupError) as e:
        logger.error("Log analysis failed: %s", e)
        return 1

    logger.info(
        "Processed %s: %d lines parsed, %d skipped",
        settings.logparser.log_path,
        service.parsed_lines,
        service.skipped_lines,
    )
    log_summary(stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
