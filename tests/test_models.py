from __future__ import annotations

from datetime import date

import pytest

from gsc_mcp.models import AnalyticsRow, InvalidArgumentError, QueryDescriptor


def _args(**overrides):
    args = {"siteUrl": "https://example.com/", "startDate": "2024-01-01", "endDate": "2024-01-31"}
    args.update(overrides)
    return args


def test_request_body_includes_only_set_fields():
    descriptor = QueryDescriptor.from_args(_args())
    assert descriptor.to_request_body() == {
        "startDate": "2024-01-01",
        "endDate": "2024-01-31",
        "rowLimit": 1000,
        "startRow": 0,
    }


def test_request_body_with_filters_and_options():
    descriptor = QueryDescriptor.from_args(
        _args(
            dimensions=["query", "device"],
            dimensionFilterGroups=[
                {
                    "groupType": "and",
                    "filters": [
                        {"dimension": "device", "operator": "equals", "expression": "MOBILE"},
                        {"dimension": "query", "operator": "contains", "expression": "shoes"},
                    ],
                }
            ],
            rowLimit=500,
            startRow=100,
            dataState="all",
            aggregationType="byPage",
        )
    )

    body = descriptor.to_request_body()
    assert body["dimensions"] == ["query", "device"]
    assert body["dimensionFilterGroups"] == [
        {
            "groupType": "and",
            "filters": [
                {"dimension": "device", "operator": "equals", "expression": "MOBILE"},
                {"dimension": "query", "operator": "contains", "expression": "shoes"},
            ],
        }
    ]
    assert body["rowLimit"] == 500
    assert body["startRow"] == 100
    assert body["dataState"] == "all"
    assert body["aggregationType"] == "byPage"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"startDate": "2024-1-1"}, "startDate must be a date"),
        ({"endDate": "2023-12-31"}, "endDate must not be earlier than startDate"),
        ({"dimensions": ["keyword"]}, "dimensions must be one of"),
        ({"dimensions": "query"}, "dimensions must be an array"),
        ({"rowLimit": 0}, "rowLimit must be between 1 and 25000"),
        ({"rowLimit": 2.5}, "rowLimit must be a whole number"),
        ({"dataState": "fresh"}, "dataState must be one of"),
        (
            {"dimensionFilterGroups": [{"filters": [{"dimension": "date", "operator": "equals", "expression": "x"}]}]},
            "filter.dimension must be one of",
        ),
        (
            {"dimensionFilterGroups": [{"filters": [{"dimension": "page", "operator": "startsWith", "expression": "x"}]}]},
            "filter.operator must be one of",
        ),
    ],
)
def test_invalid_arguments_are_rejected(overrides, message):
    with pytest.raises(InvalidArgumentError, match=message):
        QueryDescriptor.from_args(_args(**overrides))


def test_programmatic_descriptor_may_exceed_page_size():
    descriptor = QueryDescriptor(
        site_url="sc-domain:example.com",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 2),
        row_limit=60000,
    )
    assert descriptor.row_limit == 60000


def test_row_from_api_tolerates_missing_fields():
    row = AnalyticsRow.from_api({"clicks": 3})
    assert row.keys is None
    assert row.impressions == 0
    assert row.key_at(0, "none") == "none"
