from .dtos import CategoryData, SummaryData
from .models import HitsBytes, HitsBytesVisits, LogStats

__all__ = [
    "CategoryData",
    "HitsBytes",
    "HitsBytesVisits",
    "LogStats",
    "SummaryData",
]
