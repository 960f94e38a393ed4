from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import replace
from typing import Any, Literal
from urllib.parse import unquote

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from gsc_mcp.clients.gsc_client import GSCClient
from gsc_mcp.config import ServerConfig, load_env_file, normalize_property
from gsc_mcp.tools import TOOLS, ToolContext, ToolResult, handle_tool_call, scope_denial


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [MCP] %(levelname)s %(name)s: %(message)s"

mcp = FastMCP("gsc-mcp")

_context_lock = threading.Lock()
_context: ToolContext | None = None
_config: ServerConfig | None = None


def configure_logging(level: str = "INFO") -> None:
    # stdout carries the stdio protocol frames.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _server_config() -> ServerConfig:
    global _config
    if _config is None:
        _config = ServerConfig.from_env()
    return _config


def get_context() -> ToolContext:
    """Build the shared client on first use so a missing credential is a tool error."""
    global _context
    with _context_lock:
        if _context is None:
            config = _server_config()
            _context = ToolContext(client=GSCClient.from_config(config), config=config)
        return _context


def _run(name: str, args: dict[str, Any]) -> str:
    # Scope refusals need no credentials.
    denied = scope_denial(name, _server_config())
    if denied is not None:
        return _unwrap(denied)

    try:
        context = get_context()
    except Exception as exc:
        logger.error("Could not create Search Console client: %s", exc)
        raise ToolError(f"Error: {exc}") from exc

    bag = {key: value for key, value in args.items() if value is not None}
    return _unwrap(handle_tool_call(name, bag, context))


def _unwrap(result: ToolResult) -> str:
    if result.is_error:
        raise ToolError(result.text)
    return result.text


def _description(name: str) -> str:
    return TOOLS[name].description


@mcp.tool(name="searchanalytics.query", description=_description("searchanalytics.query"))
def searchanalytics_query(
    startDate: str,
    endDate: str,
    siteUrl: str | None = None,
    dimensions: list[str] | None = None,
    dimensionFilterGroups: list[dict[str, Any]] | None = None,
    rowLimit: int | None = None,
    startRow: int | None = None,
    dataState: Literal["all", "final"] | None = None,
    aggregationType: Literal["auto", "byPage", "byProperty"] | None = None,
    format: Literal["full", "compact"] | None = None,
    granularity: Literal["daily", "weekly", "monthly", "auto"] | None = None,
) -> str:
    return _run(
        "searchanalytics.query",
        {
            "siteUrl": siteUrl,
            "startDate": startDate,
            "endDate": endDate,
            "dimensions": dimensions,
            "dimensionFilterGroups": dimensionFilterGroups,
            "rowLimit": rowLimit,
            "startRow": startRow,
            "dataState": dataState,
            "aggregationType": aggregationType,
            "format": format,
            "granularity": granularity,
        },
    )


@mcp.tool(name="report.comparePeriods", description=_description("report.comparePeriods"))
def report_compare_periods(
    period1: dict[str, str],
    period2: dict[str, str],
    siteUrl: str | None = None,
    dimensions: list[str] | None = None,
    rowLimit: int | None = None,
    format: Literal["full", "compact"] | None = None,
) -> str:
    return _run(
        "report.comparePeriods",
        {
            "siteUrl": siteUrl,
            "period1": period1,
            "period2": period2,
            "dimensions": dimensions,
            "rowLimit": rowLimit,
            "format": format,
        },
    )


@mcp.tool(name="report.weeklySummary", description=_description("report.weeklySummary"))
def report_weekly_summary(
    siteUrl: str | None = None,
    endDate: str | None = None,
    format: Literal["full", "compact"] | None = None,
) -> str:
    return _run(
        "report.weeklySummary",
        {"siteUrl": siteUrl, "endDate": endDate, "format": format},
    )


@mcp.tool(name="opportunities.lowCtrHighPos", description=_description("opportunities.lowCtrHighPos"))
def opportunities_low_ctr_high_pos(
    siteUrl: str | None = None,
    startDate: str | None = None,
    endDate: str | None = None,
    minImpressions: float | None = None,
    maxCtr: float | None = None,
    minPosition: float | None = None,
    maxPosition: float | None = None,
    limit: int | None = None,
) -> str:
    return _run(
        "opportunities.lowCtrHighPos",
        {
            "siteUrl": siteUrl,
            "startDate": startDate,
            "endDate": endDate,
            "minImpressions": minImpressions,
            "maxCtr": maxCtr,
            "minPosition": minPosition,
            "maxPosition": maxPosition,
            "limit": limit,
        },
    )


@mcp.tool(
    name="opportunities.cannibalization",
    description=_description("opportunities.cannibalization"),
)
def opportunities_cannibalization(
    siteUrl: str | None = None,
    startDate: str | None = None,
    endDate: str | None = None,
    minImpressions: float | None = None,
    limit: int | None = None,
) -> str:
    return _run(
        "opportunities.cannibalization",
        {
            "siteUrl": siteUrl,
            "startDate": startDate,
            "endDate": endDate,
            "minImpressions": minImpressions,
            "limit": limit,
        },
    )


@mcp.tool(name="sites.list", description=_description("sites.list"))
def sites_list() -> str:
    return _run("sites.list", {})


@mcp.tool(name="sites.get", description=_description("sites.get"))
def sites_get(siteUrl: str | None = None) -> str:
    return _run("sites.get", {"siteUrl": siteUrl})


@mcp.tool(name="sitemaps.list", description=_description("sitemaps.list"))
def sitemaps_list(siteUrl: str | None = None) -> str:
    return _run("sitemaps.list", {"siteUrl": siteUrl})


@mcp.tool(name="sitemaps.get", description=_description("sitemaps.get"))
def sitemaps_get(feedpath: str, siteUrl: str | None = None) -> str:
    return _run("sitemaps.get", {"siteUrl": siteUrl, "feedpath": feedpath})


@mcp.tool(name="sitemaps.submit", description=_description("sitemaps.submit"))
def sitemaps_submit(feedpath: str, siteUrl: str | None = None) -> str:
    return _run("sitemaps.submit", {"siteUrl": siteUrl, "feedpath": feedpath})


@mcp.tool(name="sitemaps.delete", description=_description("sitemaps.delete"))
def sitemaps_delete(feedpath: str, siteUrl: str | None = None) -> str:
    return _run("sitemaps.delete", {"siteUrl": siteUrl, "feedpath": feedpath})


@mcp.tool(name="urlInspection.inspect", description=_description("urlInspection.inspect"))
def url_inspection_inspect(inspectionUrl: str, siteUrl: str | None = None) -> str:
    return _run("urlInspection.inspect", {"siteUrl": siteUrl, "inspectionUrl": inspectionUrl})


@mcp.tool(name="urlInspection.batchInspect", description=_description("urlInspection.batchInspect"))
def url_inspection_batch_inspect(urls: list[str], siteUrl: str | None = None) -> str:
    return _run("urlInspection.batchInspect", {"siteUrl": siteUrl, "urls": urls})


@mcp.tool(name="export.csv", description=_description("export.csv"))
def export_csv(
    startDate: str,
    endDate: str,
    siteUrl: str | None = None,
    dimensions: list[str] | None = None,
    dimensionFilterGroups: list[dict[str, Any]] | None = None,
    rowLimit: int | None = None,
) -> str:
    return _run(
        "export.csv",
        {
            "siteUrl": siteUrl,
            "startDate": startDate,
            "endDate": endDate,
            "dimensions": dimensions,
            "dimensionFilterGroups": dimensionFilterGroups,
            "rowLimit": rowLimit,
        },
    )


@mcp.tool(name="export.json", description=_description("export.json"))
def export_json(
    startDate: str,
    endDate: str,
    siteUrl: str | None = None,
    dimensions: list[str] | None = None,
    dimensionFilterGroups: list[dict[str, Any]] | None = None,
    rowLimit: int | None = None,
) -> str:
    return _run(
        "export.json",
        {
            "siteUrl": siteUrl,
            "startDate": startDate,
            "endDate": endDate,
            "dimensions": dimensions,
            "dimensionFilterGroups": dimensionFilterGroups,
            "rowLimit": rowLimit,
        },
    )


@mcp.resource("gsc://sites", mime_type="application/json")
def sites_resource() -> str:
    """Search Console properties visible to the configured credentials."""
    return _run("sites.list", {})


@mcp.resource("gsc://sites/{siteUrl}/sitemaps", mime_type="application/json")
def sitemaps_resource(siteUrl: str) -> str:
    """Sitemaps of one property; the site URL is percent-encoded in the URI."""
    return _run("sitemaps.list", {"siteUrl": unquote(siteUrl)})


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gsc-mcp",
        description="Google Search Console MCP server.",
    )
    parser.add_argument("--transport", choices=("stdio", "http"), default="stdio")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--default-property",
        default="",
        help="Property used when a tool call omits siteUrl (overrides GSC_DEFAULT_PROPERTY).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    global _config
    args = build_arg_parser().parse_args(argv)

    load_env_file()
    config = ServerConfig.from_env()
    if args.default_property:
        config = replace(config, default_property=normalize_property(args.default_property))
    _config = config

    configure_logging(config.log_level)
    logger.info(
        "Starting gsc-mcp (%s scope, %s transport, %s tools)",
        config.scope,
        args.transport,
        len(TOOLS),
    )

    if args.transport == "http":
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
