from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Sequence

from gsc_mcp.clients.gsc_client import GSCClient
from gsc_mcp.models import InspectionOutcome


MAX_BATCH_INSPECT_URLS = 10


def format_inspection_result(payload: dict[str, Any], url: str) -> dict[str, Any]:
    result = payload.get("inspectionResult") or {}
    index_status = result.get("indexStatusResult")
    mobile = result.get("mobileUsabilityResult")
    rich = result.get("richResultsResult")

    return {
        "url": url,
        "indexStatus": (
            {
                "verdict": index_status.get("verdict"),
                "coverageState": index_status.get("coverageState"),
                "indexingState": index_status.get("indexingState"),
                "lastCrawlTime": index_status.get("lastCrawlTime"),
                "crawledAs": index_status.get("crawledAs"),
                "robotsTxtState": index_status.get("robotsTxtState"),
                "pageFetchState": index_status.get("pageFetchState"),
            }
            if index_status
            else None
        ),
        "canonical": (
            {
                "google": index_status.get("googleCanonical"),
                "user": index_status.get("userCanonical"),
                "match": index_status.get("googleCanonical") == index_status.get("userCanonical"),
            }
            if index_status
            else None
        ),
        "mobileUsability": (
            {"verdict": mobile.get("verdict"), "issues": mobile.get("issues") or []}
            if mobile
            else None
        ),
        "richResults": (
            {
                "verdict": rich.get("verdict"),
                "detectedTypes": [
                    item.get("richResultType") for item in rich.get("detectedItems") or []
                ],
            }
            if rich
            else None
        ),
        "inspectionResultLink": result.get("inspectionResultLink"),
    }


def inspect_urls(
    client: GSCClient,
    site_url: str,
    urls: Sequence[str],
    max_workers: int = MAX_BATCH_INSPECT_URLS,
) -> list[InspectionOutcome]:
    """Inspect URLs concurrently; one failure never hides the other results."""

    def _inspect(url: str) -> InspectionOutcome:
        try:
            return InspectionOutcome(url=url, result=client.inspect_url(site_url, url))
        except Exception as exc:
            return InspectionOutcome(url=url, error=str(exc))

    if not urls:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(urls)))) as executor:
        return list(executor.map(_inspect, urls))


def summarize_batch(outcomes: Sequence[InspectionOutcome]) -> dict[str, Any]:
    results: list[dict[str, Any]] = []
    indexed = 0
    for outcome in outcomes:
        if outcome.error is not None:
            results.append({"url": outcome.url, "error": outcome.error})
            continue
        formatted = format_inspection_result(outcome.result, outcome.url)
        if (formatted["indexStatus"] or {}).get("verdict") == "PASS":
            indexed += 1
        results.append(formatted)

    return {
        "summary": {
            "total": len(outcomes),
            "indexed": indexed,
            "notIndexed": len(outcomes) - indexed,
        },
        "results": results,
    }
