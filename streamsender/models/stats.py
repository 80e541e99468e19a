"""
Stream Statistics Models

Defines the Pydantic models for the statistics stream-tester reports for a run.
Latencies are durations in nanoseconds, as stream-tester encodes them.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _percentile(sorted_values: List[int], p: int) -> int:
    idx = int(len(sorted_values) * p / 100)
    idx = min(idx, len(sorted_values) - 1)
    return sorted_values[idx]


class LatencySummary(BaseModel):
    """Average and percentile latencies (nanoseconds)."""

    model_config = ConfigDict(populate_by_name=True)

    avg: int = Field(0, description="Average latency (ns)")
    p50: int = Field(0, alias="p_50", description="50th percentile (ns)")
    p95: int = Field(0, alias="p_95", description="95th percentile (ns)")
    p99: int = Field(0, alias="p_99", description="99th percentile (ns)")

    @classmethod
    def from_samples(cls, samples: List[int]) -> Optional["LatencySummary"]:
        """Summarize raw per-segment latencies; None when there are no samples."""
        if not samples:
            return None
        ordered = sorted(int(s) for s in samples)
        return cls(
            avg=sum(ordered) // len(ordered),
            p50=_percentile(ordered, 50),
            p95=_percentile(ordered, 95),
            p99=_percentile(ordered, 99),
        )


class Stats(BaseModel):
    """
    Statistics of a single run, as reported by stream-tester.

    ``finished`` is False while the run is in progress; once a finished record
    has been stored it is never updated again.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    rtmp_streams: int = Field(0, description="Number of RTMP streams")
    media_streams: int = Field(0, description="Number of media streams")
    total_segments_to_send: int = Field(0, description="Segments to send")
    sent_segments: int = Field(0, description="Segments sent")
    downloaded_segments: int = Field(0, description="Segments downloaded")
    should_have_downloaded_segments: int = Field(
        0, description="Segments expected to be downloaded"
    )
    failed_to_download_segments: int = Field(
        0, description="Segments that failed to download"
    )
    profiles_num: int = Field(0, description="Configured transcoding profiles")
    retries: int = Field(0, description="Retries")
    success_rate: float = Field(
        0.0, description="downloaded_segments / (profiles_num * sent_segments)"
    )
    connection_lost: int = Field(0, description="Connection losses")
    gaps: int = Field(0, description="Gaps in downloaded media")
    finished: bool = Field(False, description="Run has finished")
    start_time: Optional[datetime] = Field(None, description="Run start time")

    raw_source_latencies: List[int] = Field(default_factory=list)
    raw_transcoded_latencies: List[int] = Field(default_factory=list)
    source_latencies: Optional[LatencySummary] = None
    transcoded_latencies: Optional[LatencySummary] = None

    @field_validator("raw_source_latencies", "raw_transcoded_latencies", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return [] if v is None else v

    @field_validator("start_time")
    @classmethod
    def _zero_time_as_none(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Go encodes an unset time.Time as 0001-01-01T00:00:00Z
        if v is not None and v.year <= 1:
            return None
        return v

    @model_validator(mode="after")
    def _derive_fields(self):
        if self.source_latencies is None:
            self.source_latencies = LatencySummary.from_samples(self.raw_source_latencies)
        if self.transcoded_latencies is None:
            self.transcoded_latencies = LatencySummary.from_samples(
                self.raw_transcoded_latencies
            )

        expected = self.profiles_num * self.sent_segments
        rate = self.downloaded_segments / expected if expected > 0 else self.success_rate
        self.success_rate = min(max(float(rate), 0.0), 1.0)
        return self

    def with_profiles_num(self, profiles_num: int) -> "Stats":
        """Return a copy with ``profiles_num`` set and derived fields recomputed."""
        data = self.model_dump()
        data["profiles_num"] = int(profiles_num)
        return Stats.model_validate(data)
