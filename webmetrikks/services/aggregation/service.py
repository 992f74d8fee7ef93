"""Aggregation service for read-only rollups of accumulated log stats.

This service handles:
- Monthly rollups over every day in the log
- Daily rollups over the trailing one-month window
- Method, response code and country breakdowns over the same window
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from webmetrikks.domain.analytics.dtos import CategoryData, SummaryData
from webmetrikks.services.logparser.constants import DAY_KEY_FORMAT, UNKNOWN_FIELD

if TYPE_CHECKING:
    from webmetrikks.domain.analytics.models import LogStats

logger = logging.getLogger(__name__)


def _add_months(day: date, months: int) -> date:
    """Shift a date by whole months, rolling day overflow into the next month.

    For example 2023-03-31 minus one month is 2023-03-03.
    """
    month_index = day.month - 1 + months
    first = date(day.year + month_index // 12, month_index % 12 + 1, 1)
    return first + timedelta(days=day.day - 1)


def _parse_day(day_key: str) -> date:
    return datetime.strptime(day_key, DAY_KEY_FORMAT).date()


class AggregationService:
    """Read-only views over a LogStats accumulator.

    None of the methods mutate the stats. Day keys without hits are
    excluded everywhere and missing days are never zero-filled.

    Example:
        service = AggregationService(stats)
        months = service.aggregates_by_month()
        methods, responses = service.method_response_aggregates()
    """

    def __init__(self, stats: "LogStats") -> None:
        """Initialize the aggregation service.

        Args:
            stats: Accumulated statistics, fully populated.
        """
        self.stats = stats

    def _day_summary(self, day_key: str, category: str) -> SummaryData:
        stats = self.stats
        return SummaryData(
            category=category,
            hits=stats.hits[day_key],
            files=stats.files.get(day_key, 0),
            pages=stats.pages.get(day_key, 0),
            bytes=stats.bytes.get(day_key, 0),
            visits=sum(stats.visits.get(day_key, {}).values()),
            sites=len(stats.sites.get(day_key, {})),
        )

    def aggregates_by_month(self) -> dict[str, SummaryData]:
        """Sum the daily metrics per calendar month.

        Returns:
            Summaries keyed by ``YYYY-MM``, labelled with the month abbreviation.
        """
        aggr: dict[str, SummaryData] = {}
        for day_key in self.stats.days():
            month_key = day_key[:7]
            summary = aggr.get(month_key)
            if summary is None:
                label = datetime.strptime(month_key, "%Y-%m").strftime("%b")
                summary = aggr[month_key] = SummaryData(category=label)
            summary.add(self._day_summary(day_key, summary.category))
        return aggr

    def recent_keys(self) -> list[str]:
        """Return the day keys in the month leading up to the latest day.

        The window is ``[latest + 1 day - 1 month, latest + 1 day)``.
        """
        days = self.stats.days()
        if not days:
            return []
        end = _parse_day(days[-1]) + timedelta(days=1)
        start = _add_months(end, -1)
        first_key, last_key = start.strftime(DAY_KEY_FORMAT), end.strftime(DAY_KEY_FORMAT)
        keys = [key for key in days if first_key <= key < last_key]
        logger.debug("Recent window [%s, %s) holds %d day(s)", first_key, last_key, len(keys))
        return keys

    def recent_aggregates(self) -> dict[str, SummaryData]:
        """Summaries for each day in the trailing window, keyed by day."""
        aggr: dict[str, SummaryData] = {}
        for day_key in self.recent_keys():
            day = _parse_day(day_key)
            aggr[day_key] = self._day_summary(day_key, f"{day:%b} {day.day}")
        return aggr

    def method_response_aggregates(self) -> tuple[dict[str, int], dict[int, int]]:
        """Hits per HTTP method and per response code over the trailing window.

        The ``-`` placeholder method of unparseable requests is left out.
        """
        methods: dict[str, int] = {}
        responses: dict[int, int] = {}
        for day_key in self.recent_keys():
            for method, hits in self.stats.methods.get(day_key, {}).items():
                if method != UNKNOWN_FIELD:
                    methods[method] = methods.get(method, 0) + hits
            for code, hits in self.stats.response_codes.get(day_key, {}).items():
                responses[code] = responses.get(code, 0) + hits
        return methods, responses

    def country_aggregates(self) -> dict[str, int]:
        """Visits per country over the trailing window."""
        countries: dict[str, int] = {}
        for day_key in self.recent_keys():
            for country, visits in self.stats.country_visits.get(day_key, {}).items():
                countries[country] = countries.get(country, 0) + visits
        return countries

    def totals(self) -> SummaryData:
        """Sum every daily metric over the whole log."""
        total = SummaryData(category="Total")
        for summary in self.aggregates_by_month().values():
            total.add(summary)
        return total

    @staticmethod
    def ranked(counts: dict[str, int] | dict[int, int], limit: int | None = None) -> list[CategoryData]:
        """Order a breakdown by descending count, ties by category."""
        ranked = sorted(
            (CategoryData(category=str(category), count=count) for category, count in counts.items()),
            key=lambda item: (-item.count, item.category),
        )
        return ranked[:limit] if limit is not None else ranked
