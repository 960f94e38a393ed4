from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from gsc_mcp.models import AnalyticsRow


GRANULARITIES = ("daily", "weekly", "monthly", "auto")


@dataclass
class _Bucket:
    clicks: int = 0
    impressions: int = 0
    positions: list[float] = field(default_factory=list)


def resolve_granularity(granularity: str, start_date: date, end_date: date) -> str:
    """Map `auto` to a concrete granularity based on the requested range.

    Ranges over 90 days roll up monthly, over 21 days weekly; anything
    shorter stays daily.
    """
    if granularity != "auto":
        return granularity
    span_days = (end_date - start_date).days
    if span_days > 90:
        return "monthly"
    if span_days > 21:
        return "weekly"
    return "daily"


def bucket_key(day: date, granularity: str) -> str:
    if granularity == "monthly":
        return f"{day.year:04d}-{day.month:02d}"
    # Monday on or before the day.
    return (day - timedelta(days=day.weekday())).isoformat()


def rollup_by_granularity(
    rows: Iterable[AnalyticsRow],
    granularity: str,
    start_date: date,
    end_date: date,
) -> list[AnalyticsRow]:
    rows = list(rows)
    actual = resolve_granularity(granularity, start_date, end_date)
    if actual == "daily":
        return rows

    buckets: dict[str, _Bucket] = {}
    for row in rows:
        raw_day = row.key_at(0)
        if not raw_day:
            continue
        try:
            day = date.fromisoformat(raw_day)
        except ValueError:
            continue
        bucket = buckets.setdefault(bucket_key(day, actual), _Bucket())
        bucket.clicks += row.clicks
        bucket.impressions += row.impressions
        bucket.positions.append(row.position)

    rolled: list[AnalyticsRow] = []
    for key, bucket in buckets.items():
        avg_position = sum(bucket.positions) / len(bucket.positions) if bucket.positions else 0.0
        rolled.append(
            AnalyticsRow(
                keys=(key,),
                clicks=bucket.clicks,
                impressions=bucket.impressions,
                # ctr comes from the summed totals, never from averaged daily ctr.
                ctr=bucket.clicks / bucket.impressions if bucket.impressions else 0.0,
                position=avg_position,
            )
        )
    rolled.sort(key=lambda row: row.key_at(0))
    return rolled
