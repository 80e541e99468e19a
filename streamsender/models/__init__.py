"""
Data models for run configuration and stream statistics.
"""

from streamsender.models.run_config import RunConfig
from streamsender.models.stats import LatencySummary, Stats

__all__ = [
    "RunConfig",
    "LatencySummary",
    "Stats",
]
