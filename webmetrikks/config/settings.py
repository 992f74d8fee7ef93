from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from webmetrikks.domain.analytics.constants import PAGE_EXTENSIONS, VISIT_TIMEOUT_SECONDS
from webmetrikks.services.logparser.constants import ALLOWED_GEOIP_LOCALES

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class GeoIPSettings(BaseSettings):
    """Country enrichment: which MaxMind database to open and how to query it."""

    model_config = SettingsConfigDict(env_prefix="GEOIP_", env_file=".env", extra="ignore")

    enabled: bool = Field(default=True, description="Look up visitor countries once the log is parsed")
    db_path: Path = Field(
        default=Path("GeoLite2-Country.mmdb"),
        description="MaxMind Country (or City) .mmdb file",
    )
    locales: list[str] = Field(
        default=["en"],
        description="Preferred locales for country names, first match wins",
    )
    workers: int = Field(default=32, ge=1, description="Concurrent country lookups")
    fallback_country: str = Field(
        default="Unknown",
        description="Stored for visitors whose country cannot be determined",
    )
    validate_db_path: bool = Field(
        default=False,
        description="Fail at startup when db_path is missing",
    )
    validate_locales: bool = Field(
        default=True,
        description="Reject locales MaxMind databases do not ship",
    )

    @model_validator(mode="after")
    def check_database_and_locales(self) -> "GeoIPSettings":
        """Apply the optional startup checks on the database file and locales."""
        if self.validate_db_path and not self.db_path.exists():
            raise ValueError(f"GeoIP database file not found: {self.db_path}")
        if self.validate_locales:
            unknown = sorted(set(self.locales) - set(ALLOWED_GEOIP_LOCALES))
            if unknown:
                raise ValueError(f"Invalid GeoIP locales {unknown}, expected any of {ALLOWED_GEOIP_LOCALES}")
        return self


class LogParserSettings(BaseSettings):
    """Input file, session timeout and page classification."""

    model_config = SettingsConfigDict(env_prefix="LOGPARSER_", env_file=".env", extra="ignore")

    log_path: Path = Field(default=Path("access.log"), description="Access log to analyze")
    visit_timeout: float = Field(
        default=VISIT_TIMEOUT_SECONDS,
        gt=0,
        description="Idle seconds after which an address's next hit opens a new visit",
    )
    page_extensions: list[str] = Field(
        default_factory=lambda: list(PAGE_EXTENSIONS),
        description="Extensions (no dot) whose hits count as pages",
    )
    page_prefixes: list[str] = Field(
        default_factory=list,
        description="Path prefixes whose hits count as pages regardless of extension",
    )

    @field_validator("page_extensions")
    @classmethod
    def normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower().lstrip(".") for ext in value]


class Settings(BaseSettings):
    """Top level settings, with one nested section per component.

    Values come from init arguments, then the environment, then ``.env``,
    then the defaults below. For instance:
        APP_LOG_LEVEL=DEBUG
        LOGPARSER_LOG_PATH=/var/log/nginx/access.log
        LOGPARSER_VISIT_TIMEOUT=1800
        GEOIP_DB_PATH=/data/GeoLite2-Country.mmdb
        GEOIP_WORKERS=16
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    name: str = Field(default="WebMetrikks")
    version: str = Field(default="0.1.0")
    debug: bool = Field(default=False, description="Force DEBUG logging")
    environment: Literal["development", "staging", "production"] = "development"
    log_level: LogLevel = Field(default="INFO", description="Root logger level")

    geoip: GeoIPSettings = Field(default_factory=GeoIPSettings)
    logparser: LogParserSettings = Field(default_factory=LogParserSettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call."""
    return Settings()
