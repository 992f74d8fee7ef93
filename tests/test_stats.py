"""Tests for the LogStats accumulator."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from webmetrikks.domain.analytics.models import HitsBytes, HitsBytesVisits, LogStats
from webmetrikks.services.logparser.logparser import LogParser

T0 = datetime.fromisoformat("2024-01-01T10:00:00+00:00")


def test_three_hit_session(make_record) -> None:
    """Gaps are measured from the previous hit, so 100s then 600s is one visit."""
    stats = LogStats()
    opened = [
        stats.add_record(make_record(timestamp=T0, url="/index.html")),
        stats.add_record(make_record(timestamp=T0 + timedelta(seconds=100), url="/about.html")),
        stats.add_record(make_record(timestamp=T0 + timedelta(seconds=700), url="/contact.php")),
    ]

    assert opened == [True, False, False]
    assert stats.hits == {"2024-01-01": 3}
    assert stats.files == {"2024-01-01": 3}
    assert stats.pages == {"2024-01-01": 3}
    assert stats.bytes == {"2024-01-01": 1500}
    assert stats.visits == {"2024-01-01": {"81.2.69.142": 1}}
    assert stats.sites == {"2024-01-01": {"81.2.69.142": 3}}
    assert stats.ips["2024-01-01"]["81.2.69.142"] == HitsBytesVisits(hits=3, bytes=1500, visits=1)


def test_visit_timeout_is_strict(make_record) -> None:
    """A gap of exactly the timeout continues the visit."""
    stats = LogStats()
    stats.add_record(make_record(timestamp=T0))

    assert stats.add_record(make_record(timestamp=T0 + timedelta(seconds=600))) is False
    assert stats.add_record(make_record(timestamp=T0 + timedelta(seconds=1200, milliseconds=1))) is True


def test_visit_timeout_measured_from_last_hit(make_record) -> None:
    """Steady traffic keeps extending the same visit."""
    stats = LogStats()
    for minutes in range(0, 60, 5):
        stats.add_record(make_record(timestamp=T0 + timedelta(minutes=minutes)))

    assert stats.visits["2024-01-01"]["81.2.69.142"] == 1
    assert stats.first_seen("81.2.69.142") == T0
    assert stats.last_seen("81.2.69.142") == T0 + timedelta(minutes=55)


def test_custom_visit_timeout(make_record) -> None:
    stats = LogStats.from_settings(visit_timeout=60, page_extensions=["html"])
    stats.add_record(make_record(timestamp=T0))

    assert stats.add_record(make_record(timestamp=T0 + timedelta(seconds=61))) is True


def test_visit_spans_midnight(make_record) -> None:
    """A visit continuing past midnight is only counted on its first day."""
    late = datetime.fromisoformat("2024-01-01T23:58:00+00:00")
    stats = LogStats()
    stats.add_record(make_record(timestamp=late))
    stats.add_record(make_record(timestamp=late + timedelta(minutes=4)))

    assert stats.visits == {"2024-01-01": {"81.2.69.142": 1}}
    assert stats.hits == {"2024-01-01": 1, "2024-01-02": 1}
    assert stats.sites["2024-01-02"] == {"81.2.69.142": 1}
    assert stats.ips["2024-01-02"]["81.2.69.142"].visits == 0


def test_first_seen_unknown_address() -> None:
    stats = LogStats()
    assert stats.first_seen("1.2.3.4") is None
    assert stats.last_seen("1.2.3.4") is None


def test_files_only_count_ok_responses(make_record) -> None:
    stats = LogStats()
    stats.add_record(make_record(status_code=200))
    stats.add_record(make_record(status_code=304))
    stats.add_record(make_record(status_code=404))

    assert stats.files == {"2024-01-01": 1}
    assert stats.response_codes["2024-01-01"] == {200: 1, 304: 1, 404: 1}


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("/index.html", True),
        ("/INDEX.HTM", True),
        ("/contact.php?ref=home", True),
        ("/docs/guide.md#intro", True),
        ("/", False),
        ("/images/logo.png", False),
        ("/api/login", False),
        ("/archive.html.gz", False),
        ("/search?q=page.html", False),
        ("-", False),
    ],
)
def test_is_page(url: str, expected: bool) -> None:
    assert LogStats().is_page(url) is expected


def test_is_page_prefixes() -> None:
    stats = LogStats.from_settings(visit_timeout=600, page_extensions=[".HTML"], page_prefixes=["/app/"])

    assert stats.page_extensions == frozenset({"html"})
    assert stats.is_page("/app/dashboard") is True
    assert stats.is_page("/static/app.js") is False
    assert stats.is_page("/index.html") is True


def test_breakdowns_by_day(make_record) -> None:
    stats = LogStats()
    stats.add_record(make_record(url="/a.html", referrer="http://example.com/", user_agent="curl/8.0"))
    stats.add_record(make_record(method="POST", url="/a.html", bytes_sent=20, user_agent="curl/8.0"))

    day = "2024-01-01"
    assert stats.methods[day] == {"GET": 1, "POST": 1}
    assert stats.url_paths[day]["/a.html"] == {"GET": HitsBytes(hits=1, bytes=500), "POST": HitsBytes(hits=1, bytes=20)}
    assert stats.referrers[day] == {"http://example.com/": HitsBytes(hits=1, bytes=500), "-": HitsBytes(hits=1, bytes=20)}
    assert stats.user_agents[day]["curl/8.0"] == HitsBytesVisits(hits=2, bytes=520, visits=1)


@pytest.mark.asyncio
async def test_sample_log_counters() -> None:
    """Per-day counters for the whole sample log."""
    stats = LogStats()
    async for record in LogParser(log_path=Path("tests/valid_access_log.txt")).iter_parsed_records():
        stats.add_record(record)

    assert stats.days() == ["2024-01-01", "2024-01-02", "2024-02-15"]
    assert stats.hits == {"2024-01-01": 4, "2024-01-02": 1, "2024-02-15": 2}
    assert stats.files == {"2024-01-01": 3}
    assert stats.pages == {"2024-01-01": 3, "2024-02-15": 1}
    assert stats.bytes == {"2024-01-01": 1500, "2024-01-02": 0, "2024-02-15": 1234}
    assert stats.visits["2024-01-01"] == {"81.2.69.142": 2, "8.8.8.8": 1}
    assert stats.visits["2024-01-02"] == {"8.8.8.8": 1}
    assert stats.unique_visitors() == ["10.0.0.5", "8.8.8.8", "81.2.69.142", "crawler.example.org"]

    for day in stats.days():
        assert stats.hits[day] >= stats.files.get(day, 0)
        assert stats.hits[day] >= stats.pages.get(day, 0)
        assert sum(stats.sites[day].values()) == stats.hits[day]
        assert sum(stats.methods[day].values()) == stats.hits[day]


def test_merge_countries(make_record) -> None:
    """Visits are summed per country and unresolved addresses are left out."""
    stats = LogStats()
    stats.add_record(make_record("81.2.69.142", T0))
    stats.add_record(make_record("81.2.69.142", T0 + timedelta(hours=1)))
    stats.add_record(make_record("8.8.8.8", T0))
    stats.add_record(make_record("8.8.4.4", T0))
    stats.add_record(make_record("10.0.0.5", T0))

    countries = {
        "81.2.69.142": ("United Kingdom", True),
        "8.8.8.8": ("United States", True),
        "8.8.4.4": ("United States", True),
        "10.0.0.5": ("Unknown", False),
    }
    stats.merge_countries(lambda ip: countries.get(ip, ("", False)))

    assert stats.country_visits == {"2024-01-01": {"United Kingdom": 2, "United States": 2}}
    # Unresolved visits still count everywhere else
    assert sum(stats.visits["2024-01-01"].values()) == 5


def test_merge_countries_is_idempotent(make_record) -> None:
    stats = LogStats()
    stats.add_record(make_record("8.8.8.8", T0))

    stats.merge_countries(lambda ip: ("United States", True))
    stats.merge_countries(lambda ip: ("United States", True))

    assert stats.country_visits == {"2024-01-01": {"United States": 1}}


def _fold_sample_log() -> LogStats:
    stats = LogStats()
    with open("tests/valid_access_log.txt", "r", encoding="utf-8") as f:
        for record in LogParser(log_path=Path("tests/valid_access_log.txt")).parse_lines(f):
            stats.add_record(record)
    return stats


def test_same_stream_gives_same_stats() -> None:
    """Folding one stream into two fresh accumulators yields identical maps."""
    first, second = _fold_sample_log(), _fold_sample_log()

    assert first == second
    assert first._first_visit == second._first_visit
    assert first._last_visit == second._last_visit
    assert first.ips == second.ips
    assert first.url_paths == second.url_paths


@pytest.mark.parametrize(
    "gaps",
    [
        [599, 600, 601, 3600],
        [601, 601, 601],
        [0, 0, 600, 600, 600],
        [3600, 1, 599.999, 600.001, 86400, 10],
    ],
)
def test_visits_follow_gaps(make_record, gaps: list[float]) -> None:
    """Visits equal one plus the number of gaps longer than the timeout."""
    stats = LogStats()
    timestamp = T0
    stats.add_record(make_record(timestamp=timestamp))
    for gap in gaps:
        timestamp += timedelta(seconds=gap)
        stats.add_record(make_record(timestamp=timestamp))

    total = sum(sum(visitors.values()) for visitors in stats.visits.values())
    assert total == 1 + sum(1 for gap in gaps if gap > 600)


def test_defaults_come_from_domain_constants() -> None:
    """The accumulator's defaults live in the domain layer, not the parser."""
    import inspect

    from webmetrikks.domain.analytics import constants, models

    stats = LogStats()

    assert stats.visit_timeout == timedelta(seconds=constants.VISIT_TIMEOUT_SECONDS)
    assert stats.page_extensions == frozenset(constants.PAGE_EXTENSIONS)
    assert "webmetrikks.services" not in inspect.getsource(models).split("if TYPE_CHECKING:")[0]
