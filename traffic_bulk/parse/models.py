"""Data models for traffic records and snapshots."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field

from traffic_bulk.parse.numbers import format_duration

DEFAULT_SOURCE = "traffic.cv"
HISTORY_SOURCE = "traffic.cv:history"


def utcnow() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class HistoricalMonthData(BaseModel):
    """One month of visits mined from the upstream chart."""

    month_year: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    monthly_visits: Optional[int] = Field(default=None, ge=0)


class TrafficRecord(BaseModel):
    """Outward-facing traffic result, one per requested domain."""

    domain: str
    monthly_visits: Optional[int] = Field(default=None, ge=0)
    avg_session_duration: Optional[str] = Field(default=None, description="HH:MM:SS")
    avg_session_duration_seconds: Optional[int] = Field(default=None, ge=0)
    bounce_rate: Optional[float] = Field(default=None, ge=0, le=100)
    pages_per_visit: Optional[float] = Field(default=None, ge=0)
    growth_rate: Optional[float] = Field(default=None, description="Percent change vs previous month")
    checked_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, domain: str, error: str) -> "TrafficRecord":
        """Build an error record with every metric empty."""
        return cls(domain=domain, error=error)

    def has_data(self) -> bool:
        """True if any metric was extracted (zero visits counts as data)."""
        return any(
            value is not None
            for value in (
                self.monthly_visits,
                self.avg_session_duration_seconds,
                self.bounce_rate,
                self.pages_per_visit,
            )
        )


class TrafficSnapshot(BaseModel):
    """Persisted monthly snapshot, unique per (domain, month_year)."""

    domain: str
    month_year: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    monthly_visits: Optional[int] = Field(default=None, ge=0)
    avg_session_duration_seconds: Optional[int] = Field(default=None, ge=0)
    bounce_rate: Optional[float] = Field(default=None, ge=0, le=100)
    pages_per_visit: Optional[float] = Field(default=None, ge=0)
    checked_at: datetime = Field(default_factory=utcnow)
    source: str = DEFAULT_SOURCE
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: TrafficRecord, month_year: str) -> "TrafficSnapshot":
        """Snapshot a successful record for the given accounting month."""
        return cls(
            domain=record.domain,
            month_year=month_year,
            monthly_visits=record.monthly_visits,
            avg_session_duration_seconds=record.avg_session_duration_seconds,
            bounce_rate=record.bounce_rate,
            pages_per_visit=record.pages_per_visit,
            checked_at=record.checked_at or utcnow(),
        )

    def to_record(self, growth_rate: Optional[float] = None) -> TrafficRecord:
        """Expand into an outward record (duration formatted from seconds)."""
        return TrafficRecord(
            domain=self.domain,
            monthly_visits=self.monthly_visits,
            avg_session_duration=format_duration(self.avg_session_duration_seconds),
            avg_session_duration_seconds=self.avg_session_duration_seconds,
            bounce_rate=self.bounce_rate,
            pages_per_visit=self.pages_per_visit,
            growth_rate=growth_rate,
            checked_at=self.checked_at,
        )

    def to_history(self) -> HistoricalMonthData:
        return HistoricalMonthData(month_year=self.month_year, monthly_visits=self.monthly_visits)


class ScrapeError(BaseModel):
    """Error log row, one per domain per day."""

    domain: str
    day: str
    message: str
    attempted_at: datetime
    retry_count: int = 0


class BatchMetadata(BaseModel):
    """Per-call metadata returned alongside the results."""

    total_domains: int
    batches_processed: int
    cache_hits: int
    cache_misses: int
    errors: list[str] = Field(default_factory=list)
    background_scraping: bool = False


class TrafficResponse(BaseModel):
    """Full response for a bulk lookup."""

    results: list[TrafficRecord]
    metadata: BatchMetadata


class UsageStats(BaseModel):
    """Daily usage aggregate."""

    day: str
    total_rows: int = 0
    total_errors: int = 0
    total_visits: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


class TrendSummary(BaseModel):
    """Aggregates over the newest N monthly snapshots."""

    period: str
    avg_monthly_visits: float
    total_visits: int
    avg_bounce_rate: Optional[float] = None
    avg_pages_per_visit: Optional[float] = None
    data_points: int


@dataclass
class ExtractionResult:
    """A record plus what was mined alongside it."""

    record: TrafficRecord
    historical_months: list[HistoricalMonthData] = field(default_factory=list)
    # Rendered fragment the record came from; scopes history mining to one card
    scope_html: Optional[str] = None
