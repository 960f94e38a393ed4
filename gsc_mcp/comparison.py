from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Callable, Sequence, TypeVar

from gsc_mcp.clients.gsc_client import GSCClient
from gsc_mcp.formatters import DEFAULT_ROW_LIMIT, format_percent, format_position, format_rows
from gsc_mcp.models import AnalyticsResponse, DateWindow, FormatOptions, PeriodTotals, QueryDescriptor
from gsc_mcp.time_windows import weekly_windows


T = TypeVar("T")


def fan_out(calls: dict[str, Callable[[], T]]) -> dict[str, T]:
    """Run independent blocking calls side by side and collect their results."""
    if not calls:
        return {}
    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        futures = {name: executor.submit(call) for name, call in calls.items()}
        return {name: future.result() for name, future in futures.items()}


def signed_number(value: int) -> str:
    return f"{value:+d}"


def percent_change(current: float, previous: float) -> str:
    if not previous:
        return "N/A"
    return f"{(current - previous) / previous * 100:+.1f}%"


def _period_query(
    client: GSCClient,
    site_url: str,
    window: DateWindow,
    dimensions: Sequence[str] = (),
    row_limit: int = DEFAULT_ROW_LIMIT,
) -> Callable[[], AnalyticsResponse]:
    descriptor = QueryDescriptor(
        site_url=site_url,
        start_date=window.start,
        end_date=window.end,
        dimensions=tuple(dimensions),
        row_limit=row_limit,
    )
    return lambda: client.search_analytics(descriptor)


def _period_block(window: DateWindow, totals: PeriodTotals) -> dict[str, Any]:
    return {
        "dates": window.as_dict(),
        "totals": {
            "clicks": totals.clicks,
            "impressions": totals.impressions,
            "avgPosition": format_position(totals.avg_position),
        },
        "rowCount": totals.row_count,
    }


def compute_changes(current: PeriodTotals, previous: PeriodTotals) -> dict[str, str] | None:
    """Deltas between two periods, or None unless both returned rows.

    Position uses the unweighted mean of row positions.
    """
    if not current.row_count or not previous.row_count:
        return None
    position_delta = format_position(current.avg_position - previous.avg_position)
    return {
        "clicks": signed_number(current.clicks - previous.clicks),
        "clicksPercent": percent_change(current.clicks, previous.clicks),
        "impressions": signed_number(current.impressions - previous.impressions),
        "impressionsPercent": percent_change(current.impressions, previous.impressions),
        "avgPosition": f"{position_delta:+.1f}",
    }


def compare_periods(
    client: GSCClient,
    site_url: str,
    period1: DateWindow,
    period2: DateWindow,
    dimensions: Sequence[str] = (),
    row_limit: int = DEFAULT_ROW_LIMIT,
    options: FormatOptions | None = None,
) -> dict[str, Any]:
    options = options or FormatOptions(site_url=site_url)
    results = fan_out(
        {
            "period1": _period_query(client, site_url, period1, dimensions, row_limit),
            "period2": _period_query(client, site_url, period2, dimensions, row_limit),
        }
    )
    totals1 = PeriodTotals.from_rows(results["period1"].rows)
    totals2 = PeriodTotals.from_rows(results["period2"].rows)

    return {
        "comparison": {
            "period1": _period_block(period1, totals1),
            "period2": _period_block(period2, totals2),
            "changes": compute_changes(totals1, totals2),
        },
        "period1Data": format_rows(results["period1"].rows, options),
        "period2Data": format_rows(results["period2"].rows, options),
    }


def _weekly_totals(totals: PeriodTotals) -> dict[str, Any]:
    return {
        "clicks": totals.clicks,
        "impressions": totals.impressions,
        "ctr": format_percent(totals.ctr),
        "position": format_position(totals.weighted_position),
    }


def weekly_summary(
    client: GSCClient,
    site_url: str,
    end_date: date | None = None,
    options: FormatOptions | None = None,
) -> dict[str, Any]:
    """Week-over-week summary for the 7 days ending on `end_date`.

    Totals use the impression-weighted position, unlike `compare_periods`.
    """
    options = options or FormatOptions(site_url=site_url)
    windows = weekly_windows(end_date)
    current, previous = windows["current"], windows["previous"]

    results = fan_out(
        {
            "current": _period_query(client, site_url, current, row_limit=1),
            "previous": _period_query(client, site_url, previous, row_limit=1),
            "queries": _period_query(client, site_url, current, ("query",), row_limit=10),
            "pages": _period_query(client, site_url, current, ("page",), row_limit=10),
            "devices": _period_query(client, site_url, current, ("device",), row_limit=5),
        }
    )

    current_totals = PeriodTotals.from_rows(results["current"].rows)
    previous_totals = PeriodTotals.from_rows(results["previous"].rows)

    changes = None
    if current_totals.row_count and previous_totals.row_count:
        position_delta = current_totals.weighted_position - previous_totals.weighted_position
        changes = {
            "clicks": signed_number(current_totals.clicks - previous_totals.clicks),
            "clicksPercent": percent_change(current_totals.clicks, previous_totals.clicks),
            "impressions": signed_number(current_totals.impressions - previous_totals.impressions),
            "impressionsPercent": percent_change(
                current_totals.impressions, previous_totals.impressions
            ),
            "ctr": f"{(current_totals.ctr - previous_totals.ctr) * 100:+.2f}%",
            "position": f"{format_position(position_delta):+.1f}",
        }

    return {
        "period": current.as_dict(),
        "previousPeriod": previous.as_dict(),
        "totals": _weekly_totals(current_totals),
        "previousTotals": _weekly_totals(previous_totals) if previous_totals.row_count else None,
        "changes": changes,
        "topQueries": format_rows(results["queries"].rows, options),
        "topPages": format_rows(results["pages"].rows, options),
        "deviceBreakdown": [
            {
                "device": row.key_at(0, "unknown"),
                "clicks": row.clicks,
                "impressions": row.impressions,
            }
            for row in results["devices"].rows
        ],
    }
