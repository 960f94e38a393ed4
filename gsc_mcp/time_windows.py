from __future__ import annotations

from datetime import date, timedelta

from gsc_mcp.models import DateWindow


ANALYSIS_WINDOW_DAYS = 28


def default_analysis_window(today: date | None = None) -> DateWindow:
    """Default range for opportunity analyses: the last 28 days up to today."""
    today = today or date.today()
    return DateWindow(
        "Last 28 days",
        today - timedelta(days=ANALYSIS_WINDOW_DAYS),
        today,
    )


def weekly_windows(end_date: date | None = None) -> dict[str, DateWindow]:
    """Build the 7-day window ending on `end_date` and the 7 days before it.

    `end_date` defaults to yesterday, the latest day with (partial) data.
    """
    current_end = end_date or (date.today() - timedelta(days=1))
    current_start = current_end - timedelta(days=6)

    previous_end = current_start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=6)

    return {
        "current": DateWindow("Current week", current_start, current_end),
        "previous": DateWindow("Previous week", previous_start, previous_end),
    }
