from collections.abc import AsyncGenerator, Iterable, Iterator
import re
import os
import time
import logging
from functools import wraps, lru_cache
from datetime import datetime
from pathlib import Path
from typing import ParamSpec, Callable
from urllib.parse import unquote

import aiofiles

from .constants import access_log_pattern, TIMESTAMP_FORMAT, UNKNOWN_FIELD
from .schemas import LogRecord


logger = logging.getLogger(__name__)

P = ParamSpec("P")

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class MalformedLineError(ValueError):
    """Raised when a log line does not match the access log grammar."""


WAIT_DISABLED_ENV = "DISABLE_WAIT"


def wait(timeout_seconds: int = 60, interval: float = 1.0) -> Callable[[Callable[P, bool]], Callable[P, bool]]:
    """Retry a boolean check until it passes or `timeout_seconds` elapse.

    Setting DISABLE_WAIT=true runs the check exactly once.
    """
    def decorator(func: Callable[P, bool]) -> Callable[P, bool]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> bool:
            if os.getenv(WAIT_DISABLED_ENV, "false").lower() == "true":
                return bool(func(*args, **kwargs))
            deadline = time.monotonic() + timeout_seconds
            while not func(*args, **kwargs):
                if time.monotonic() >= deadline:
                    logger.error("%s still failing after %ds", func.__name__, timeout_seconds)
                    return False
                time.sleep(interval)
            return True
        return wrapper
    return decorator


@lru_cache(maxsize=4096)
def unescape(value: str) -> str:
    """Percent-decode a path or referrer, returning the raw value if decoding fails."""
    if "%" not in value:
        return value
    if _BAD_ESCAPE.search(value):
        logger.debug("Invalid percent escape in %r, keeping raw value", value)
        return value
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        logger.debug("Percent-decoded %r is not valid UTF-8, keeping raw value", value)
        return value


def _split_request(request: str) -> tuple[str, str, str]:
    """Split a request line into (method, path, protocol)."""
    if request in ("", UNKNOWN_FIELD):
        return UNKNOWN_FIELD, UNKNOWN_FIELD, ""
    method, sep, rest = request.partition(" ")
    if not sep or not method or not rest:
        raise MalformedLineError(f"Invalid request line: {request!r}")
    url, sep, protocol = rest.rpartition(" ")
    if not sep or not protocol.startswith("HTTP/"):
        # HTTP/0.9 style request, or a path containing spaces without protocol
        return method, rest, ""
    return method, url, protocol


class LogParser:
    """Parses access log lines into LogRecord objects.

    Lines that fail the combined log format, or carry a bad timestamp or
    size, are logged and counted as skipped rather than raised to the
    reader of :meth:`iter_parsed_records`.
    """

    def __init__(self, log_path: Path) -> None:
        """Create a parser for one log file.

        Args:
            log_path: Access log to read.
        """
        self.log_path = log_path

        self.parsed_lines: int = 0
        self.skipped_lines: int = 0

        logger.debug("Log file path: %s", self.log_path)

    def validate_log_line(self, log_line: str) -> re.Match[str] | None:
        """Validate the log line against the access log pattern."""
        return access_log_pattern().match(log_line.rstrip("\r\n"))

    @wait(timeout_seconds=5)
    def log_file_exists(self) -> bool:
        """Check that the log file is present, retrying for up to 5 seconds."""
        if os.path.isfile(self.log_path):
            return True
        logger.warning("Waiting for log file %s", self.log_path)
        return False

    def extract(self, log_line: str) -> LogRecord:
        """Parse one raw log line.

        Structural fields (timestamp, size, status) are strict and fail the
        whole line; percent-decoding of the path and referrer is lenient.

        Raises:
            MalformedLineError: If the line does not match the grammar or a
                structural field cannot be parsed.
        """
        matched = self.validate_log_line(log_line)
        if not matched:
            raise MalformedLineError("Line did not match expected log format")

        datadict: dict[str, str] = matched.groupdict()

        try:
            timestamp = datetime.strptime(datadict["dateandtime"], TIMESTAMP_FORMAT)
        except ValueError as e:
            raise MalformedLineError(f"Invalid timestamp {datadict['dateandtime']!r}") from e

        size = datadict["bytes_sent"]
        if size == UNKNOWN_FIELD:
            bytes_sent = 0
        elif size.isascii() and size.isdigit():
            bytes_sent = int(size)
        else:
            raise MalformedLineError(f"Invalid response size {size!r}")

        method, url, http_version = _split_request(datadict["request"])

        return LogRecord(
            ip_address=datadict["ip_address"],
            timestamp=timestamp,
            method=method,
            url=unescape(url),
            http_version=http_version,
            status_code=int(datadict["status_code"]),
            bytes_sent=bytes_sent,
            referrer=unescape(datadict["referrer"]),
            user_agent=datadict["user_agent"],
        )

    def _extract_or_skip(self, line_number: int, log_line: str) -> LogRecord | None:
        """Extract a line, logging and counting it as skipped on failure."""
        try:
            record = self.extract(log_line)
        except MalformedLineError as e:
            self.skipped_lines += 1
            logger.warning("Invalid line %d: %s", line_number, e)
            logger.debug("Skipped line %d: '%s'", line_number, log_line.strip())
            return None
        self.parsed_lines += 1
        return record

    def parse_lines(self, lines: Iterable[str]) -> Iterator[LogRecord]:
        """Yield a LogRecord for every valid line, skipping malformed ones."""
        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            if record := self._extract_or_skip(line_number, line):
                yield record

    async def iter_parsed_records(self) -> AsyncGenerator[LogRecord, None]:
        """Async generator that reads the log file once and yields LogRecord objects.

        Lines are read in file order and each record is yielded before the
        next line is read, so the consumer folds them strictly sequentially.

        Raises:
            OSError: If the log file cannot be opened.
        """
        logger.info("Reading log file %s", self.log_path)
        line_number = 0
        async with aiofiles.open(self.log_path, "r", encoding="utf-8", errors="replace") as file:
            async for line in file:
                line_number += 1
                if not line.strip():
                    continue
                if record := self._extract_or_skip(line_number, line):
                    yield record

        logger.info(
            "Finished reading %s: %d parsed, %d skipped",
            self.log_path,
            self.parsed_lines,
            self.skipped_lines,
        )
