"""Response shaping for LLM consumers.

Rows are first normalized (URL prefixes stripped, metrics rounded) and then
rendered by one of two serializers: the full shape keeps field names and
4-decimal ctr, the compact shape uses short keys and percentage strings to
keep responses small.
"""

from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from gsc_mcp.models import AnalyticsRow, FormatOptions


DEFAULT_ROW_LIMIT = 25
DEFAULT_EXPORT_ROW_LIMIT = 1000

URL_SCHEMES = ("http://", "https://")


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def format_ctr(ctr: float, compact: bool = False) -> float | str:
    if compact:
        return f"{ctr * 100:.2f}%"
    return round_half_up(ctr, 4)


def format_position(position: float) -> float:
    return round_half_up(position, 1)


def format_percent(value: float, digits: int = 2) -> str:
    return f"{value * 100:.{digits}f}%"


def _site_prefixes(site_url: str) -> tuple[str, ...]:
    if site_url.startswith("sc-domain:"):
        domain = site_url[len("sc-domain:"):]
        return (
            f"https://{domain}",
            f"https://www.{domain}",
            f"http://{domain}",
            f"http://www.{domain}",
        )
    return (site_url.rstrip("/"),)


def strip_url_prefix(url: str, site_url: str | None = None) -> str:
    if not site_url or not url:
        return url
    for prefix in _site_prefixes(site_url):
        if not prefix or not url.startswith(prefix):
            continue
        remainder = url[len(prefix):]
        # The prefix must end at the host boundary.
        if not remainder:
            return "/"
        if remainder[0] in "/?#":
            return remainder
    return url


@dataclass(frozen=True)
class NormalizedRow:
    keys: tuple[str, ...] | None
    clicks: int
    impressions: int
    ctr: float
    position: float


def normalize_row(row: AnalyticsRow, site_url: str | None = None) -> NormalizedRow:
    keys = row.keys
    if keys and site_url:
        keys = tuple(
            strip_url_prefix(key, site_url) if key.startswith(URL_SCHEMES) else key
            for key in keys
        )
    return NormalizedRow(
        keys=keys,
        clicks=row.clicks,
        impressions=row.impressions,
        ctr=row.ctr,
        position=format_position(row.position),
    )


def serialize_full(row: NormalizedRow) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if row.keys is not None:
        payload["keys"] = list(row.keys)
    payload.update(
        {
            "clicks": row.clicks,
            "impressions": row.impressions,
            "ctr": format_ctr(row.ctr, compact=False),
            "position": row.position,
        }
    )
    return payload


def serialize_compact(row: NormalizedRow) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if row.keys:
        if len(row.keys) == 1:
            payload["key"] = row.keys[0]
        else:
            payload["keys"] = list(row.keys)
    payload.update(
        {
            "clicks": row.clicks,
            "imp": row.impressions,
            "ctr": format_ctr(row.ctr, compact=True),
            "pos": row.position,
        }
    )
    return payload


def format_row(row: AnalyticsRow, options: FormatOptions | None = None) -> dict[str, Any]:
    options = options or FormatOptions()
    normalized = normalize_row(row, options.site_url)
    if options.compact:
        return serialize_compact(normalized)
    return serialize_full(normalized)


def format_rows(
    rows: Iterable[AnalyticsRow] | None, options: FormatOptions | None = None
) -> list[dict[str, Any]]:
    if not rows:
        return []
    return [format_row(row, options) for row in rows]


def generate_summary(
    rows: Sequence[AnalyticsRow] | None,
    dimensions: Sequence[str] | None = None,
    site_url: str | None = None,
) -> str | None:
    if not rows:
        return None

    top = normalize_row(rows[0], site_url)
    dimension_name = dimensions[0] if dimensions else "item"
    subject = f"Top {dimension_name}"
    if top.keys:
        subject = f"{subject} '{top.keys[0]}'"
    return (
        f"{subject} got {top.clicks} clicks from {top.impressions} impressions "
        f"at position {top.position}"
    )


def compute_totals(rows: Iterable[AnalyticsRow] | None) -> dict[str, int]:
    rows = list(rows or [])
    return {
        "clicks": sum(row.clicks for row in rows),
        "impressions": sum(row.impressions for row in rows),
    }


def rows_to_csv(rows: Sequence[AnalyticsRow], dimensions: Sequence[str]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([*dimensions, "clicks", "impressions", "ctr", "position"])
    for row in rows:
        writer.writerow(
            [
                *(row.key_at(index) for index in range(len(dimensions))),
                row.clicks,
                row.impressions,
                format_percent(row.ctr),
                f"{row.position:.1f}",
            ]
        )
    return buffer.getvalue()


def rows_to_export_records(
    rows: Sequence[AnalyticsRow], dimensions: Sequence[str]
) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for row in rows:
        record: dict[str, Any] = {
            dimension: row.key_at(index) for index, dimension in enumerate(dimensions)
        }
        record.update(
            {
                "clicks": row.clicks,
                "impressions": row.impressions,
                "ctr": row.ctr,
                "position": row.position,
            }
        )
        records.append(record)
    return records
