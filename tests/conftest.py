import os
from datetime import datetime
from pathlib import Path
from typing import Callable

import pytest
from geoip2.errors import AddressNotFoundError

from webmetrikks.services.logparser.schemas import LogRecord

TESTS_DIR = Path(__file__).parent


@pytest.fixture(scope="session", autouse=True)
def disable_wait_env():
    """Ensure retry loops are disabled during test runs.

    Sets DISABLE_WAIT=true for the entire pytest session so any @wait-decorated
    functions run once and return immediately, preventing slow/hanging tests.
    """
    os.environ["DISABLE_WAIT"] = "true"


@pytest.fixture(scope="session", autouse=True)
def baseline_settings_env():
    """Provide baseline env vars so tests are not affected by local .env.

    Pydantic-settings precedence: init args > env vars > .env > defaults.
    Setting these ensures stable defaults regardless of any .env present.
    """
    os.environ.update({
        # App
        "APP_NAME": "WebMetrikks",
        "APP_VERSION": "0.1.0",
        "APP_DEBUG": "false",
        "APP_ENVIRONMENT": "development",
        "APP_LOG_LEVEL": "INFO",
        # GeoIP
        "GEOIP_ENABLED": "true",
        "GEOIP_DB_PATH": "tests/GeoLite2-Country.mmdb",
        "GEOIP_WORKERS": "32",
        # Log parser
        "LOGPARSER_LOG_PATH": "tests/valid_access_log.txt",
        "LOGPARSER_VISIT_TIMEOUT": "600",
    })


@pytest.fixture(autouse=True)
def refresh_settings_cache():
    """Clear settings cache so env changes take effect per test.

    Ensures tests using monkeypatch.setenv() get a fresh Settings instance.
    """
    from webmetrikks.config.settings import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeCountry:
    def __init__(self, name: str | None) -> None:
        self.name = name


class FakeCountryResponse:
    def __init__(self, name: str | None) -> None:
        self.country = FakeCountry(name)


class FakeReader:
    """Stands in for geoip2.database.Reader with a fixed address table."""

    def __init__(self, countries: dict[str, str | None]) -> None:
        self.countries = countries
        self.queried: list[str] = []
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def country(self, ip_address: str) -> FakeCountryResponse:
        self.queried.append(ip_address)
        if ip_address not in self.countries:
            raise AddressNotFoundError(f"The address {ip_address} is not in the database.")
        return FakeCountryResponse(self.countries[ip_address])

    def close(self) -> None:
        self.close_calls += 1


@pytest.fixture
def make_reader() -> Callable[[dict[str, str | None]], FakeReader]:
    """Factory for readers with a custom address table."""
    return FakeReader


@pytest.fixture
def fake_reader() -> FakeReader:
    """Reader knowing the public addresses used in the sample logs."""
    return FakeReader({
        "81.2.69.142": "United Kingdom",
        "8.8.8.8": "United States",
        "66.249.66.1": "United States",
        "1.1.1.1": "Australia",
    })


@pytest.fixture
def valid_log_path() -> Path:
    return TESTS_DIR / "valid_access_log.txt"


@pytest.fixture
def invalid_log_path() -> Path:
    return TESTS_DIR / "invalid_logs.txt"


@pytest.fixture
def make_record() -> Callable[..., LogRecord]:
    """Factory for LogRecord objects with sensible defaults."""
    def _make(
        ip_address: str = "81.2.69.142",
        timestamp: datetime | None = None,
        *,
        method: str = "GET",
        url: str = "/index.html",
        status_code: int = 200,
        bytes_sent: int = 500,
        referrer: str = "-",
        user_agent: str = "Mozilla/5.0",
    ) -> LogRecord:
        return LogRecord(
            ip_address=ip_address,
            timestamp=timestamp or datetime.fromisoformat("2024-01-01T10:00:00+00:00"),
            method=method,
            url=url,
            http_version="HTTP/1.1",
            status_code=status_code,
            bytes_sent=bytes_sent,
            referrer=referrer,
            user_agent=user_agent,
        )
    return _make
