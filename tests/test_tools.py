from __future__ import annotations

import json
from datetime import date, timedelta

from gsc_mcp.clients.gsc_client import RemoteError
from gsc_mcp.config import ServerConfig
from gsc_mcp.models import AnalyticsResponse, AnalyticsRow, SiteInfo, SitemapInfo
from gsc_mcp.tools import TOOLS, ToolContext, handle_tool_call


SITE = "sc-domain:example.com"


class _FakeClient:
    def __init__(self, rows: list[AnalyticsRow] | None = None):
        self.rows = rows or []
        self.calls: list[tuple] = []

    def search_analytics(self, descriptor):
        self.calls.append(("search_analytics", descriptor))
        return AnalyticsResponse(rows=tuple(self.rows), aggregation_type="byProperty")

    def list_sites(self):
        self.calls.append(("list_sites",))
        return [SiteInfo(site_url=SITE, permission_level="siteOwner")]

    def get_site(self, site_url):
        self.calls.append(("get_site", site_url))
        return SiteInfo(site_url=site_url, permission_level="siteOwner")

    def list_sitemaps(self, site_url):
        self.calls.append(("list_sitemaps", site_url))
        return [SitemapInfo(path="https://example.com/sitemap.xml", errors=0)]

    def get_sitemap(self, site_url, feedpath):
        self.calls.append(("get_sitemap", site_url, feedpath))
        return None

    def submit_sitemap(self, site_url, feedpath):
        self.calls.append(("submit_sitemap", site_url, feedpath))

    def delete_sitemap(self, site_url, feedpath):
        self.calls.append(("delete_sitemap", site_url, feedpath))

    def inspect_url(self, site_url, inspection_url):
        self.calls.append(("inspect_url", site_url, inspection_url))
        if "broken" in inspection_url:
            raise RemoteError("Request failed with status 500", status=500, retryable=True)
        verdict = "PASS" if "indexed" in inspection_url else "NEUTRAL"
        return {
            "inspectionResult": {
                "inspectionResultLink": "https://search.google.com/search-console/inspect",
                "indexStatusResult": {
                    "verdict": verdict,
                    "coverageState": "Submitted and indexed",
                    "googleCanonical": inspection_url,
                    "userCanonical": inspection_url,
                },
                "richResultsResult": {
                    "verdict": "PASS",
                    "detectedItems": [{"richResultType": "Product"}],
                },
            }
        }


def _context(client=None, scope="readonly", default_property="", today=None) -> ToolContext:
    return ToolContext(
        client=client or _FakeClient(),
        config=ServerConfig(scope=scope, default_property=default_property),
        today=today,
    )


def _row(keys, clicks=10, impressions=100, position=3.0) -> AnalyticsRow:
    return AnalyticsRow(
        keys=tuple(keys),
        clicks=clicks,
        impressions=impressions,
        ctr=clicks / impressions,
        position=position,
    )


def test_registry_contains_every_tool():
    assert sorted(TOOLS) == sorted(
        [
            "searchanalytics.query",
            "report.comparePeriods",
            "report.weeklySummary",
            "opportunities.lowCtrHighPos",
            "opportunities.cannibalization",
            "sites.list",
            "sites.get",
            "sitemaps.list",
            "sitemaps.get",
            "sitemaps.submit",
            "sitemaps.delete",
            "urlInspection.inspect",
            "urlInspection.batchInspect",
            "export.csv",
            "export.json",
        ]
    )
    assert {name for name, tool in TOOLS.items() if tool.requires_full_scope} == {
        "sitemaps.submit",
        "sitemaps.delete",
        "urlInspection.inspect",
        "urlInspection.batchInspect",
    }


def test_unknown_tool_is_an_error():
    result = handle_tool_call("sites.destroy", {}, _context())
    assert result.is_error
    assert result.text == "Unknown tool: sites.destroy"


def test_full_scope_tool_is_refused_without_remote_call():
    client = _FakeClient()
    result = handle_tool_call(
        "sitemaps.submit",
        {"siteUrl": SITE, "feedpath": "https://example.com/sitemap.xml"},
        _context(client),
    )

    assert result.is_error
    assert result.text.startswith('The "sitemaps.submit" feature requires full scope access.')
    assert "GSC_SCOPE=full" in result.text
    assert client.calls == []


def test_full_scope_tool_runs_with_full_scope():
    client = _FakeClient()
    result = handle_tool_call(
        "sitemaps.delete",
        {"siteUrl": SITE, "feedpath": "https://example.com/old.xml"},
        _context(client, scope="full"),
    )

    assert not result.is_error
    assert json.loads(result.text)["message"] == "Sitemap deleted from GSC: https://example.com/old.xml"
    assert client.calls == [("delete_sitemap", SITE, "https://example.com/old.xml")]


def test_invalid_arguments_become_error_payload():
    client = _FakeClient()
    result = handle_tool_call(
        "searchanalytics.query",
        {"siteUrl": SITE, "startDate": "2024/01/01", "endDate": "2024-01-31"},
        _context(client),
    )

    assert result.is_error
    assert result.text.startswith("Error: startDate must be a date in YYYY-MM-DD format")
    assert client.calls == []


def test_row_limit_above_maximum_is_rejected():
    result = handle_tool_call(
        "searchanalytics.query",
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31", "rowLimit": 30000},
        _context(),
    )
    assert result.is_error
    assert "rowLimit must be between 1 and 25000" in result.text


def test_default_property_is_injected():
    client = _FakeClient()
    result = handle_tool_call("sites.get", {}, _context(client, default_property=SITE))

    assert not result.is_error
    assert client.calls == [("get_site", SITE)]
    assert json.loads(result.text) == {"siteUrl": SITE, "permissionLevel": "siteOwner"}


def test_missing_site_url_without_default_is_an_error():
    result = handle_tool_call("sitemaps.list", {}, _context())
    assert result.is_error
    assert result.text == "Error: siteUrl is required."


def test_query_full_output():
    client = _FakeClient([_row(["shoes"], clicks=12, impressions=300, position=2.26)])
    result = handle_tool_call(
        "searchanalytics.query",
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31", "dimensions": ["query"]},
        _context(client),
    )

    payload = json.loads(result.text)
    assert payload == {
        "summary": {"rowCount": 1, "aggregationType": "byProperty"},
        "totals": {"clicks": 12, "impressions": 300},
        "rows": [{"keys": ["shoes"], "clicks": 12, "impressions": 300, "ctr": 0.04, "position": 2.3}],
    }
    descriptor = client.calls[0][1]
    assert descriptor.row_limit == 25


def test_query_compact_output_with_weekly_rollup():
    start = date(2024, 1, 1)
    rows = [_row([(start + timedelta(days=offset)).isoformat()]) for offset in range(35)]
    client = _FakeClient(rows)

    result = handle_tool_call(
        "searchanalytics.query",
        {
            "siteUrl": SITE,
            "startDate": "2024-01-01",
            "endDate": "2024-02-04",
            "dimensions": ["date"],
            "format": "compact",
            "granularity": "auto",
            "rowLimit": 1000,
        },
        _context(client),
    )

    payload = json.loads(result.text)
    assert [row["key"] for row in payload["rows"]] == [
        "2024-01-01",
        "2024-01-08",
        "2024-01-15",
        "2024-01-22",
        "2024-01-29",
    ]
    assert payload["rows"][0] == {"key": "2024-01-01", "clicks": 70, "imp": 700, "ctr": "10.00%", "pos": 3.0}
    assert payload["total"] == {"clicks": 350, "impressions": 3500}
    assert payload["summary"] == "Top date '2024-01-01' got 70 clicks from 700 impressions at position 3.0"


def test_query_compact_output_omits_summary_without_rows():
    result = handle_tool_call(
        "searchanalytics.query",
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31", "format": "compact"},
        _context(),
    )
    assert json.loads(result.text) == {"total": {"clicks": 0, "impressions": 0}, "rows": []}


def test_rollup_only_applies_when_date_is_first_dimension():
    rows = [_row(["shoes", "2024-01-01"]), _row(["shoes", "2024-01-02"])]
    result = handle_tool_call(
        "searchanalytics.query",
        {
            "siteUrl": SITE,
            "startDate": "2024-01-01",
            "endDate": "2024-02-04",
            "dimensions": ["query", "date"],
            "granularity": "weekly",
        },
        _context(_FakeClient(rows)),
    )
    assert len(json.loads(result.text)["rows"]) == 2


def test_missing_sitemap_is_reported():
    result = handle_tool_call(
        "sitemaps.get",
        {"siteUrl": SITE, "feedpath": "https://example.com/missing.xml"},
        _context(),
    )
    assert result.is_error
    assert result.text == "Sitemap not found: https://example.com/missing.xml"


def test_low_ctr_uses_default_window_and_query_page_rows():
    client = _FakeClient([_row(["winter boots", "https://example.com/boots"], 10, 1000, 8.0)])
    result = handle_tool_call(
        "opportunities.lowCtrHighPos",
        {"siteUrl": SITE},
        _context(client, today=date(2024, 3, 29)),
    )

    payload = json.loads(result.text)
    descriptor = client.calls[0][1]
    assert descriptor.dimensions == ("query", "page")
    assert descriptor.row_limit == 10000
    assert payload["summary"]["dateRange"] == {"startDate": "2024-03-01", "endDate": "2024-03-29"}
    assert payload["summary"]["totalPotentialClicks"] == 40
    assert payload["summary"]["criteria"]["maxCtr"] == "3.0%"
    assert payload["opportunities"][0]["potentialClicks"] == 40


def test_cannibalization_fetches_maximum_rows():
    client = _FakeClient(
        [
            _row(["shoes", "https://example.com/a"], 10, 400, 3.0),
            _row(["shoes", "https://example.com/b"], 2, 200, 9.0),
        ]
    )
    result = handle_tool_call(
        "opportunities.cannibalization",
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31"},
        _context(client),
    )

    payload = json.loads(result.text)
    assert client.calls[0][1].row_limit == 25000
    assert payload["summary"]["issuesFound"] == 1
    assert payload["summary"]["totalQueriesAnalyzed"] == 1
    assert payload["issues"][0]["totalImpressions"] == 600


def test_batch_inspection_keeps_partial_failures():
    client = _FakeClient()
    urls = [
        "https://example.com/indexed",
        "https://example.com/broken",
        "https://example.com/new",
    ]
    result = handle_tool_call(
        "urlInspection.batchInspect",
        {"siteUrl": SITE, "urls": urls},
        _context(client, scope="full"),
    )

    payload = json.loads(result.text)
    assert not result.is_error
    assert payload["summary"] == {"total": 3, "indexed": 1, "notIndexed": 2}
    assert [item["url"] for item in payload["results"]] == urls
    assert payload["results"][1] == {
        "url": "https://example.com/broken",
        "error": "Request failed with status 500",
    }
    assert payload["results"][0]["canonical"]["match"] is True
    assert payload["results"][0]["richResults"]["detectedTypes"] == ["Product"]


def test_batch_inspection_caps_url_count():
    client = _FakeClient()
    urls = [f"https://example.com/{index}" for index in range(11)]
    result = handle_tool_call(
        "urlInspection.batchInspect",
        {"siteUrl": SITE, "urls": urls},
        _context(client, scope="full"),
    )

    assert result.is_error
    assert result.text == "Maximum 10 URLs allowed per batch inspection"
    assert client.calls == []


def test_export_csv_defaults_to_query_dimension():
    client = _FakeClient([_row(["shoes"], 10, 200, 3.27)])
    result = handle_tool_call(
        "export.csv",
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31"},
        _context(client),
    )

    descriptor = client.calls[0][1]
    assert descriptor.dimensions == ("query",)
    assert descriptor.row_limit == 1000
    assert result.text == "query,clicks,impressions,ctr,position\nshoes,10,200,5.00%,3.3\n"


def test_export_json_includes_metadata():
    client = _FakeClient([_row(["mobile"], 1, 10, 4.0)])
    result = handle_tool_call(
        "export.json",
        {
            "siteUrl": SITE,
            "startDate": "2024-01-01",
            "endDate": "2024-01-31",
            "dimensions": ["device"],
        },
        _context(client),
    )

    payload = json.loads(result.text)
    metadata = payload["metadata"]
    assert metadata["siteUrl"] == SITE
    assert metadata["dimensions"] == ["device"]
    assert metadata["rowCount"] == 1
    assert metadata["exportedAt"].endswith("+00:00")
    assert payload["data"] == [
        {"device": "mobile", "clicks": 1, "impressions": 10, "ctr": 0.1, "position": 4.0}
    ]


def test_remote_failure_becomes_error_payload():
    class _FailingClient(_FakeClient):
        def list_sites(self):
            raise RemoteError("Request had insufficient authentication scopes.", status=403)

    result = handle_tool_call("sites.list", {}, _context(_FailingClient()))
    assert result.is_error
    assert result.text == "Error: Request had insufficient authentication scopes."
