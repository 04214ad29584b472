"""
Usage analytics for the project dashboard.

Aggregates usage records into request, token, latency and cost
metrics, compared against the preceding period of equal length.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..storage.models import UsageRecord

SUCCESS_STATUS = 200

# A century; larger windows overflow datetime arithmetic
MAX_WINDOW_DAYS = 36500


@dataclass(frozen=True)
class DailyUsage:
    """Usage totals for a single calendar day (UTC)."""
    day: date
    requests: int
    tokens: int
    cost: float
    avg_latency_ms: int


@dataclass(frozen=True)
class UsageBreakdown:
    """Usage totals for one model or provider."""
    name: str
    requests: int
    share: float  # percent of all requests in the window
    avg_tokens: int
    avg_latency_ms: int
    total_cost: float
    success_rate: float


@dataclass(frozen=True)
class UsageSummary:
    """Dashboard metrics for a time window."""
    days: int
    window_start: datetime
    window_end: datetime
    total_requests: int
    successful_requests: int
    total_tokens: int
    total_cost: float
    avg_latency_ms: int
    error_rate: float
    avg_cost_per_request: float
    requests_change: float
    tokens_change: float
    cost_change: float
    latency_change: float
    daily: List[DailyUsage] = field(default_factory=list)
    by_model: List[UsageBreakdown] = field(default_factory=list)
    by_provider: List[UsageBreakdown] = field(default_factory=list)

    def __post_init__(self):
        """Validate time window is logical."""
        if self.window_start > self.window_end:
            raise ValueError("window_start must be before window_end")


def percent_change(current: float, previous: float) -> float:
    """Relative change in percent; 0 when there is no previous value."""
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def _avg_latency(records: List[UsageRecord]) -> int:
    if not records:
        return 0
    return round(sum(r.request_duration_ms for r in records) / len(records))


def _success_count(records: List[UsageRecord]) -> int:
    return sum(1 for r in records if r.status_code == SUCCESS_STATUS)


def _daily_series(records: List[UsageRecord]) -> List[DailyUsage]:
    buckets: Dict[date, List[UsageRecord]] = {}
    for record in records:
        buckets.setdefault(record.timestamp.date(), []).append(record)

    return [
        DailyUsage(
            day=day,
            requests=len(bucket),
            tokens=sum(r.total_tokens for r in bucket),
            cost=sum(r.total_cost for r in bucket),
            avg_latency_ms=_avg_latency(bucket),
        )
        for day, bucket in sorted(buckets.items())
    ]


def _breakdown(
    records: List[UsageRecord],
    key: Callable[[UsageRecord], str],
) -> List[UsageBreakdown]:
    groups: Dict[str, List[UsageRecord]] = {}
    for record in records:
        groups.setdefault(key(record), []).append(record)

    total = len(records)
    rows = []
    for name, group in groups.items():
        count = len(group)
        rows.append(UsageBreakdown(
            name=name,
            requests=count,
            share=count / total * 100,
            avg_tokens=round(sum(r.total_tokens for r in group) / count),
            avg_latency_ms=_avg_latency(group),
            total_cost=sum(r.total_cost for r in group),
            success_rate=_success_count(group) / count * 100,
        ))
    # Most used first, name as tie-breaker for stable output
    rows.sort(key=lambda row: (-row.requests, row.name))
    return rows


def summarize_usage(
    records: List[UsageRecord],
    days: int = 30,
    now: Optional[datetime] = None,
) -> UsageSummary:
    """Compute dashboard metrics for the last ``days`` days.

    The previous window is the ``days`` days immediately before the
    current one; change percentages compare the two.

    Args:
        records: Usage records of one project, in any order
        days: Window length in days
        now: End of the window (defaults to current UTC time)

    Returns:
        UsageSummary for the window

    Raises:
        ValueError: If days is not between 1 and MAX_WINDOW_DAYS
    """
    if days <= 0:
        raise ValueError("days must be > 0")
    if days > MAX_WINDOW_DAYS:
        raise ValueError(f"days must be <= {MAX_WINDOW_DAYS}")

    window_end = now or datetime.now(timezone.utc)
    window_start = window_end - timedelta(days=days)
    prev_start = window_end - timedelta(days=2 * days)

    current = [r for r in records if window_start <= r.timestamp <= window_end]
    previous = [r for r in records if prev_start <= r.timestamp < window_start]

    total_requests = len(current)
    successful = _success_count(current)
    total_tokens = sum(r.total_tokens for r in current)
    total_cost = sum(r.total_cost for r in current)
    avg_latency = _avg_latency(current)

    prev_tokens = sum(r.total_tokens for r in previous)
    prev_cost = sum(r.total_cost for r in previous)

    return UsageSummary(
        days=days,
        window_start=window_start,
        window_end=window_end,
        total_requests=total_requests,
        successful_requests=successful,
        total_tokens=total_tokens,
        total_cost=total_cost,
        avg_latency_ms=avg_latency,
        error_rate=(total_requests - successful) / total_requests * 100 if total_requests else 0.0,
        avg_cost_per_request=total_cost / total_requests if total_requests else 0.0,
        requests_change=percent_change(total_requests, len(previous)),
        tokens_change=percent_change(total_tokens, prev_tokens),
        cost_change=percent_change(total_cost, prev_cost),
        latency_change=percent_change(avg_latency, _avg_latency(previous)),
        daily=_daily_series(current),
        by_model=_breakdown(current, lambda r: r.model),
        by_provider=_breakdown(current, lambda r: r.provider),
    )
