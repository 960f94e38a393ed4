"""Tool handlers exposed to AI clients.

Each handler takes the raw argument bag of a tool call and returns a
JSON-serializable payload (or CSV text). `handle_tool_call` is the only
entry point: it injects the default property, enforces scope and turns
every failure into an error result so one bad call never takes down the
server.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping

from gsc_mcp.clients.gsc_client import GSCClient
from gsc_mcp.comparison import compare_periods, weekly_summary
from gsc_mcp.config import ServerConfig
from gsc_mcp.formatters import (
    DEFAULT_EXPORT_ROW_LIMIT,
    DEFAULT_ROW_LIMIT,
    compute_totals,
    format_rows,
    generate_summary,
    rows_to_csv,
    rows_to_export_records,
)
from gsc_mcp.inspection import (
    MAX_BATCH_INSPECT_URLS,
    format_inspection_result,
    inspect_urls,
    summarize_batch,
)
from gsc_mcp.models import (
    MAX_ROWS_PER_REQUEST,
    DateWindow,
    FormatOptions,
    InvalidArgumentError,
    QueryDescriptor,
    optional_int,
    optional_number,
    parse_dimensions,
    parse_iso_date,
    require_choice,
)
from gsc_mcp.opportunities import (
    find_cannibalization_in_groups,
    find_low_ctr_opportunities,
    group_pages_by_query,
    total_potential_clicks,
)
from gsc_mcp.rollup import GRANULARITIES, rollup_by_granularity
from gsc_mcp.time_windows import default_analysis_window


logger = logging.getLogger(__name__)

LOW_CTR_FETCH_ROWS = 10000
CANNIBALIZATION_FETCH_ROWS = MAX_ROWS_PER_REQUEST


@dataclass(frozen=True)
class ToolResult:
    text: str
    is_error: bool = False


@dataclass(frozen=True)
class ToolContext:
    client: GSCClient
    config: ServerConfig
    today: date | None = None


Handler = Callable[[dict[str, Any], ToolContext], Any]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    handler: Handler
    requires_full_scope: bool = False


TOOLS: dict[str, ToolDefinition] = {}


def tool(name: str, description: str, requires_full_scope: bool = False) -> Callable[[Handler], Handler]:
    def register(handler: Handler) -> Handler:
        TOOLS[name] = ToolDefinition(
            name=name,
            description=description,
            handler=handler,
            requires_full_scope=requires_full_scope,
        )
        return handler

    return register


def scope_upgrade_message(feature: str) -> str:
    return (
        f'The "{feature}" feature requires full scope access.\n'
        "To upgrade, set GSC_SCOPE=full and authorize the credentials for "
        "https://www.googleapis.com/auth/webmasters."
    )


def _site_url(args: Mapping[str, Any]) -> str:
    site_url = str(args.get("siteUrl") or "").strip()
    if not site_url:
        raise InvalidArgumentError("siteUrl is required.")
    return site_url


def _required_text(args: Mapping[str, Any], name: str) -> str:
    value = str(args.get(name) or "").strip()
    if not value:
        raise InvalidArgumentError(f"{name} is required.")
    return value


def _row_limit(args: Mapping[str, Any], default: int) -> int:
    row_limit = optional_int(args, "rowLimit", default)
    if not 1 <= row_limit <= MAX_ROWS_PER_REQUEST:
        raise InvalidArgumentError(
            f"rowLimit must be between 1 and {MAX_ROWS_PER_REQUEST}, got {row_limit}."
        )
    return row_limit


def _analysis_window(args: Mapping[str, Any], context: ToolContext) -> DateWindow:
    default = default_analysis_window(context.today)
    start = parse_iso_date(args["startDate"], "startDate") if args.get("startDate") else default.start
    end = parse_iso_date(args["endDate"], "endDate") if args.get("endDate") else default.end
    return DateWindow(default.name, start, end)


def _period(args: Mapping[str, Any], name: str) -> DateWindow:
    raw = args.get(name)
    if not isinstance(raw, Mapping):
        raise InvalidArgumentError(f"{name} must be an object with startDate and endDate.")
    return DateWindow(
        name,
        parse_iso_date(raw.get("startDate"), f"{name}.startDate"),
        parse_iso_date(raw.get("endDate"), f"{name}.endDate"),
    )


@tool(
    "searchanalytics.query",
    "Query Search Console performance data (clicks, impressions, CTR, position) grouped by "
    "dimensions, with filters. format='compact' gives token-efficient output; granularity "
    "'weekly', 'monthly' or 'auto' rolls up date-dimensioned results.",
)
def search_analytics_query(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    options = FormatOptions.from_args(args)
    granularity = require_choice(args.get("granularity") or "daily", GRANULARITIES, "granularity")
    descriptor = QueryDescriptor.from_args(args, default_row_limit=DEFAULT_ROW_LIMIT)

    response = context.client.search_analytics(descriptor)
    rows = list(response.rows)
    if descriptor.dimensions[:1] == ("date",) and granularity != "daily":
        rows = rollup_by_granularity(rows, granularity, descriptor.start_date, descriptor.end_date)

    totals = compute_totals(rows)
    formatted = format_rows(rows, options)

    if options.compact:
        payload: dict[str, Any] = {}
        summary = generate_summary(rows, descriptor.dimensions, options.site_url)
        if summary:
            payload["summary"] = summary
        payload["total"] = totals
        payload["rows"] = formatted
        return payload

    return {
        "summary": {"rowCount": len(rows), "aggregationType": response.aggregation_type},
        "totals": totals,
        "rows": formatted,
    }


@tool(
    "report.comparePeriods",
    "Compare search performance between two date ranges (week-over-week, month-over-month, "
    "before/after a change). Returns totals, deltas and the rows of both periods.",
)
def report_compare_periods(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    return compare_periods(
        context.client,
        site_url,
        _period(args, "period1"),
        _period(args, "period2"),
        dimensions=parse_dimensions(args.get("dimensions")),
        row_limit=_row_limit(args, DEFAULT_ROW_LIMIT),
        options=FormatOptions.from_args(args),
    )


@tool(
    "report.weeklySummary",
    "Weekly performance summary with week-over-week changes, top queries, top pages and a "
    "device breakdown. endDate defaults to yesterday.",
)
def report_weekly_summary(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    end_date = parse_iso_date(args["endDate"], "endDate") if args.get("endDate") else None
    return weekly_summary(
        context.client,
        site_url,
        end_date=end_date,
        options=FormatOptions.from_args(args),
    )


@tool(
    "opportunities.lowCtrHighPos",
    "Find quick wins: queries ranking in positions 4-20 with many impressions but CTR under "
    "3%, ranked by the clicks a 5% CTR would add.",
)
def opportunities_low_ctr(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    window = _analysis_window(args, context)
    min_impressions = optional_number(args, "minImpressions", 100)
    max_ctr = optional_number(args, "maxCtr", 0.03)
    min_position = optional_number(args, "minPosition", 4)
    max_position = optional_number(args, "maxPosition", 20)
    limit = optional_int(args, "limit", 25)

    response = context.client.search_analytics(
        QueryDescriptor(
            site_url=site_url,
            start_date=window.start,
            end_date=window.end,
            dimensions=("query", "page"),
            row_limit=LOW_CTR_FETCH_ROWS,
        )
    )
    opportunities = find_low_ctr_opportunities(
        response.rows,
        min_impressions=min_impressions,
        max_ctr=max_ctr,
        min_position=min_position,
        max_position=max_position,
        limit=limit,
    )
    return {
        "summary": {
            "opportunitiesFound": len(opportunities),
            "totalPotentialClicks": total_potential_clicks(opportunities),
            "criteria": {
                "minImpressions": min_impressions,
                "maxCtr": f"{max_ctr * 100:.1f}%",
                "positionRange": f"{min_position:g}-{max_position:g}",
            },
            "dateRange": window.as_dict(),
        },
        "opportunities": [item.as_dict() for item in opportunities],
    }


@tool(
    "opportunities.cannibalization",
    "Detect keyword cannibalization: queries where two or more pages of the site rank, "
    "sorted by total impressions, with a consolidation recommendation.",
)
def opportunities_cannibalization(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    window = _analysis_window(args, context)

    response = context.client.search_analytics(
        QueryDescriptor(
            site_url=site_url,
            start_date=window.start,
            end_date=window.end,
            dimensions=("query", "page"),
            row_limit=CANNIBALIZATION_FETCH_ROWS,
        )
    )
    groups = group_pages_by_query(response.rows)
    issues = find_cannibalization_in_groups(
        groups,
        min_impressions=optional_number(args, "minImpressions", 50),
        limit=optional_int(args, "limit", 25),
    )
    return {
        "summary": {
            "issuesFound": len(issues),
            "totalQueriesAnalyzed": len(groups),
            "dateRange": window.as_dict(),
        },
        "issues": [issue.as_dict() for issue in issues],
    }


@tool("sites.list", "List the Search Console properties the configured credentials can access.")
def sites_list(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    sites = context.client.list_sites()
    return {"siteCount": len(sites), "sites": [site.as_dict() for site in sites]}


@tool("sites.get", "Get the permission level for one Search Console property.")
def sites_get(args: dict[str, Any], context: ToolContext) -> dict[str, Any] | ToolResult:
    site_url = _site_url(args)
    site = context.client.get_site(site_url)
    if site is None:
        return ToolResult(f"Site not found: {site_url}", is_error=True)
    return site.as_dict()


@tool("sitemaps.list", "List sitemaps of a property with submission dates, status and error counts.")
def sitemaps_list(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    sitemaps = context.client.list_sitemaps(site_url)
    return {
        "siteUrl": site_url,
        "sitemapCount": len(sitemaps),
        "sitemaps": [sitemap.as_dict() for sitemap in sitemaps],
    }


@tool("sitemaps.get", "Get details for one sitemap (feedpath is the full sitemap URL).")
def sitemaps_get(args: dict[str, Any], context: ToolContext) -> dict[str, Any] | ToolResult:
    site_url = _site_url(args)
    feedpath = _required_text(args, "feedpath")
    sitemap = context.client.get_sitemap(site_url, feedpath)
    if sitemap is None:
        return ToolResult(f"Sitemap not found: {feedpath}", is_error=True)
    return sitemap.as_dict()


@tool("sitemaps.submit", "Submit a sitemap for crawling. Requires full scope.", requires_full_scope=True)
def sitemaps_submit(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    feedpath = _required_text(args, "feedpath")
    context.client.submit_sitemap(site_url, feedpath)
    return {
        "success": True,
        "message": f"Sitemap submitted: {feedpath}",
        "siteUrl": site_url,
        "feedpath": feedpath,
    }


@tool(
    "sitemaps.delete",
    "Remove a sitemap from Search Console (the file itself is untouched). Requires full scope.",
    requires_full_scope=True,
)
def sitemaps_delete(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    feedpath = _required_text(args, "feedpath")
    context.client.delete_sitemap(site_url, feedpath)
    return {
        "success": True,
        "message": f"Sitemap deleted from GSC: {feedpath}",
        "siteUrl": site_url,
        "feedpath": feedpath,
    }


@tool(
    "urlInspection.inspect",
    "Inspect a URL: index status, last crawl, canonical, mobile usability and rich results. "
    "Requires full scope.",
    requires_full_scope=True,
)
def url_inspection_inspect(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    site_url = _site_url(args)
    inspection_url = _required_text(args, "inspectionUrl")
    payload = context.client.inspect_url(site_url, inspection_url)
    return format_inspection_result(payload, inspection_url)


@tool(
    "urlInspection.batchInspect",
    f"Inspect up to {MAX_BATCH_INSPECT_URLS} URLs in parallel; failures are reported per URL. "
    "Requires full scope.",
    requires_full_scope=True,
)
def url_inspection_batch(args: dict[str, Any], context: ToolContext) -> dict[str, Any] | ToolResult:
    site_url = _site_url(args)
    urls = args.get("urls")
    if not isinstance(urls, (list, tuple)) or not urls:
        raise InvalidArgumentError("urls must be a non-empty array of URLs.")
    if len(urls) > MAX_BATCH_INSPECT_URLS:
        return ToolResult(
            f"Maximum {MAX_BATCH_INSPECT_URLS} URLs allowed per batch inspection",
            is_error=True,
        )
    outcomes = inspect_urls(
        context.client,
        site_url,
        [str(url) for url in urls],
        max_workers=context.config.batch_inspect_workers,
    )
    return summarize_batch(outcomes)


def _export_query(args: Mapping[str, Any], context: ToolContext) -> tuple[QueryDescriptor, list]:
    bag = dict(args)
    if bag.get("dimensions") is None:
        bag["dimensions"] = ["query"]
    descriptor = QueryDescriptor.from_args(bag, default_row_limit=DEFAULT_EXPORT_ROW_LIMIT)
    response = context.client.search_analytics(descriptor)
    return descriptor, list(response.rows)


@tool(
    "export.csv",
    "Export search analytics rows as CSV (one column per dimension, then clicks, impressions, "
    "ctr, position). Default 1000 rows.",
)
def export_csv(args: dict[str, Any], context: ToolContext) -> str:
    descriptor, rows = _export_query(args, context)
    return rows_to_csv(rows, descriptor.dimensions)


@tool(
    "export.json",
    "Export search analytics rows as JSON records keyed by dimension name, with export "
    "metadata. Default 1000 rows.",
)
def export_json(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    descriptor, rows = _export_query(args, context)
    return {
        "metadata": {
            "siteUrl": descriptor.site_url,
            "startDate": descriptor.start_date.isoformat(),
            "endDate": descriptor.end_date.isoformat(),
            "dimensions": list(descriptor.dimensions),
            "rowCount": len(rows),
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        },
        "data": rows_to_export_records(rows, descriptor.dimensions),
    }


def scope_denial(name: str, config: ServerConfig) -> ToolResult | None:
    definition = TOOLS.get(name)
    if definition is None or not definition.requires_full_scope or config.has_full_scope:
        return None
    logger.info("Tool %s refused: readonly scope", name)
    return ToolResult(scope_upgrade_message(name), is_error=True)


def handle_tool_call(
    name: str,
    args: Mapping[str, Any] | None,
    context: ToolContext,
) -> ToolResult:
    definition = TOOLS.get(name)
    if definition is None:
        return ToolResult(f"Unknown tool: {name}", is_error=True)

    denied = scope_denial(name, context.config)
    if denied is not None:
        return denied

    bag = dict(args or {})
    if context.config.default_property and not bag.get("siteUrl"):
        bag["siteUrl"] = context.config.default_property

    logger.info("Tool %s called with: %s", name, ", ".join(sorted(bag)))
    try:
        result = definition.handler(bag, context)
    except Exception as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return ToolResult(f"Error: {exc}", is_error=True)

    if isinstance(result, ToolResult):
        return result
    if isinstance(result, str):
        return ToolResult(result)
    return ToolResult(json.dumps(result, indent=2, ensure_ascii=False))
