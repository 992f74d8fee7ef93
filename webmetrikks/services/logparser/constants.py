"""Constants and compiled patterns for access log parsing."""
import re
from functools import lru_cache

# Locales shipped in the MaxMind GeoIP2/GeoLite2 databases
ALLOWED_GEOIP_LOCALES: list[str] = ["de", "en", "es", "fr", "ja", "pt-BR", "ru", "zh-CN"]
GEOIP_LOCALES_DEFAULT: list[str] = ["en"]

# IPy address types that never appear in a GeoIP database
UNROUTABLE_IP_TYPES: frozenset[str] = frozenset(
    {"PRIVATE", "LOOPBACK", "LINKLOCAL", "RESERVED", "CARRIER_GRADE_NAT", "UNSPECIFIED", "ULA", "SITE-LOCAL", "MULTICAST"}
)

TIMESTAMP_FORMAT = "%d/%b/%Y:%H:%M:%S %z"
DAY_KEY_FORMAT = "%Y-%m-%d"

# Placeholder written by web servers for missing fields
UNKNOWN_FIELD = "-"

# Quoted field allowing backslash-escaped quotes
_QUOTED = r'(?:[^"\\]|\\.)*'


@lru_cache(maxsize=1)
def access_log_pattern() -> re.Pattern[str]:
    """Combined log format, tolerating extra trailing fields (nginx)."""
    return re.compile(
        r"^(?P<ip_address>\S+) "
        r"(?P<ident>\S+) "
        r"(?P<remote_user>\S+) "
        r"\[(?P<dateandtime>[^\]]+)\] "
        rf'"(?P<request>{_QUOTED})" '
        r"(?P<status_code>[0-9]+) "
        r"(?P<bytes_sent>\S+)"
        rf' "(?P<referrer>{_QUOTED})"'
        rf' "(?P<user_agent>{_QUOTED})"'
        r"(?:\s.*)?$"
    )
