from __future__ import annotations

from typing import Iterable, Mapping

from gsc_mcp.formatters import round_half_up
from gsc_mcp.models import AnalyticsRow, CannibalizationIssue, CannibalizationPage, Opportunity


# Flat benchmark applied to every position in the analysed range.
BENCHMARK_CTR = 0.05
DOMINANT_POSITION = 5.0

MULTI_PAGE_RECOMMENDATION = (
    "Multiple pages competing. Consider: 1) Consolidate into one authoritative page, "
    "2) Differentiate content focus, or 3) Use canonical tags."
)


def potential_clicks(impressions: int, clicks: int) -> int:
    return int(round_half_up(impressions * BENCHMARK_CTR - clicks))


def find_low_ctr_opportunities(
    rows: Iterable[AnalyticsRow],
    min_impressions: float = 100,
    max_ctr: float = 0.03,
    min_position: float = 4,
    max_position: float = 20,
    limit: int = 25,
) -> list[Opportunity]:
    """Queries ranking on pages 1-2 whose CTR lags behind the benchmark.

    Rows are expected to be dimensioned by (query, page).
    """
    opportunities = [
        Opportunity(
            query=row.key_at(0),
            page=row.keys[1] if row.keys and len(row.keys) > 1 else None,
            clicks=row.clicks,
            impressions=row.impressions,
            ctr=row.ctr,
            position=row.position,
            potential_clicks=potential_clicks(row.impressions, row.clicks),
        )
        for row in rows
        if row.impressions >= min_impressions
        and row.ctr < max_ctr
        and min_position <= row.position <= max_position
    ]
    opportunities.sort(key=lambda item: item.potential_clicks, reverse=True)
    return opportunities[: max(0, limit)]


def total_potential_clicks(opportunities: Iterable[Opportunity]) -> int:
    return sum(item.potential_clicks for item in opportunities)


def _recommendation(best: CannibalizationPage) -> str:
    if best.position < DOMINANT_POSITION:
        return f"Consider consolidating content into {best.page} and redirecting other pages."
    return MULTI_PAGE_RECOMMENDATION


def group_pages_by_query(rows: Iterable[AnalyticsRow]) -> dict[str, list[CannibalizationPage]]:
    groups: dict[str, list[CannibalizationPage]] = {}
    for row in rows:
        groups.setdefault(row.key_at(0), []).append(
            CannibalizationPage(
                page=row.key_at(1),
                clicks=row.clicks,
                impressions=row.impressions,
                ctr=row.ctr,
                position=row.position,
            )
        )
    return groups


def find_cannibalization(
    rows: Iterable[AnalyticsRow],
    min_impressions: float = 50,
    limit: int = 25,
) -> list[CannibalizationIssue]:
    """Queries where two or more pages of the property compete, most impressions first.

    Rows are expected to be dimensioned by (query, page).
    """
    return find_cannibalization_in_groups(
        group_pages_by_query(rows), min_impressions=min_impressions, limit=limit
    )


def find_cannibalization_in_groups(
    groups: Mapping[str, list[CannibalizationPage]],
    min_impressions: float = 50,
    limit: int = 25,
) -> list[CannibalizationIssue]:
    issues: list[CannibalizationIssue] = []
    for query, pages in groups.items():
        if len({page.page for page in pages}) < 2:
            continue
        total_impressions = sum(page.impressions for page in pages)
        if total_impressions < min_impressions:
            continue

        ordered = tuple(sorted(pages, key=lambda page: page.position))
        issues.append(
            CannibalizationIssue(
                query=query,
                pages=ordered,
                total_impressions=total_impressions,
                recommendation=_recommendation(ordered[0]),
            )
        )

    issues.sort(key=lambda issue: issue.total_impressions, reverse=True)
    return issues[: max(0, limit)]
