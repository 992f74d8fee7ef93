from .analytics.models import HitsBytes
from .analytics.models import HitsBytesVisits
from .analytics.models import LogStats

__all__ = [
    "HitsBytes",
    "HitsBytesVisits",
    "LogStats",
]
