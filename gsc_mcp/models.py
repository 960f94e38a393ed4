from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping


MAX_ROWS_PER_REQUEST = 25000

DIMENSIONS = ("query", "page", "country", "device", "searchAppearance", "date")
FILTER_DIMENSIONS = ("query", "page", "country", "device", "searchAppearance")
FILTER_OPERATORS = (
    "equals",
    "notEquals",
    "contains",
    "notContains",
    "includingRegex",
    "excludingRegex",
)
GROUP_TYPES = ("and", "or")
DATA_STATES = ("all", "final")
AGGREGATION_TYPES = ("auto", "byPage", "byProperty")
OUTPUT_FORMATS = ("full", "compact")


class InvalidArgumentError(ValueError):
    """Raised when tool arguments do not describe a valid query."""


def parse_iso_date(value: Any, field_name: str) -> date:
    text = str(value or "").strip()
    if len(text) != 10:
        raise InvalidArgumentError(f"{field_name} must be a date in YYYY-MM-DD format, got {value!r}.")
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise InvalidArgumentError(
            f"{field_name} must be a date in YYYY-MM-DD format, got {value!r}."
        ) from exc


def require_choice(value: Any, choices: tuple[str, ...], field_name: str) -> str:
    text = str(value)
    if text not in choices:
        raise InvalidArgumentError(
            f"{field_name} must be one of {', '.join(choices)}; got {value!r}."
        )
    return text


def optional_int(args: Mapping[str, Any], name: str, default: int) -> int:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise InvalidArgumentError(f"{name} must be a number, got {raw!r}.")
    try:
        number = float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{name} must be a number, got {raw!r}.") from exc
    if not number.is_integer():
        raise InvalidArgumentError(f"{name} must be a whole number, got {raw!r}.")
    return int(number)


def optional_number(args: Mapping[str, Any], name: str, default: float) -> float:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise InvalidArgumentError(f"{name} must be a number, got {raw!r}.")
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{name} must be a number, got {raw!r}.") from exc


@dataclass(frozen=True)
class DateWindow:
    name: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def as_dict(self) -> dict[str, str]:
        return {"startDate": self.start.isoformat(), "endDate": self.end.isoformat()}


@dataclass(frozen=True)
class AnalyticsRow:
    keys: tuple[str, ...] | None
    clicks: int
    impressions: int
    ctr: float
    position: float

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "AnalyticsRow":
        keys = payload.get("keys")
        return cls(
            keys=tuple(str(key) for key in keys) if keys else None,
            clicks=int(payload.get("clicks") or 0),
            impressions=int(payload.get("impressions") or 0),
            ctr=float(payload.get("ctr") or 0.0),
            position=float(payload.get("position") or 0.0),
        )

    def key_at(self, index: int, default: str = "") -> str:
        if not self.keys or index >= len(self.keys):
            return default
        return self.keys[index]


@dataclass(frozen=True)
class AnalyticsResponse:
    rows: tuple[AnalyticsRow, ...] = ()
    aggregation_type: str | None = None


@dataclass(frozen=True)
class DimensionFilter:
    dimension: str
    operator: str
    expression: str

    def to_body(self) -> dict[str, str]:
        return {
            "dimension": self.dimension,
            "operator": self.operator,
            "expression": self.expression,
        }


@dataclass(frozen=True)
class FilterGroup:
    filters: tuple[DimensionFilter, ...]
    group_type: str = "and"

    def to_body(self) -> dict[str, Any]:
        return {
            "groupType": self.group_type,
            "filters": [item.to_body() for item in self.filters],
        }

    @classmethod
    def from_args(cls, payload: Any) -> "FilterGroup":
        if not isinstance(payload, Mapping):
            raise InvalidArgumentError("Each dimensionFilterGroups entry must be an object.")
        group_type = require_choice(
            payload.get("groupType") or "and", GROUP_TYPES, "dimensionFilterGroups.groupType"
        )
        raw_filters = payload.get("filters") or []
        if not isinstance(raw_filters, (list, tuple)):
            raise InvalidArgumentError("dimensionFilterGroups.filters must be an array.")
        filters: list[DimensionFilter] = []
        for raw in raw_filters:
            if not isinstance(raw, Mapping):
                raise InvalidArgumentError("Each filter must be an object.")
            expression = raw.get("expression")
            if not isinstance(expression, str):
                raise InvalidArgumentError("Filter expression must be a string.")
            filters.append(
                DimensionFilter(
                    dimension=require_choice(raw.get("dimension"), FILTER_DIMENSIONS, "filter.dimension"),
                    operator=require_choice(raw.get("operator"), FILTER_OPERATORS, "filter.operator"),
                    expression=expression,
                )
            )
        return cls(filters=tuple(filters), group_type=group_type)


def parse_dimensions(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
        raise InvalidArgumentError("dimensions must be an array of dimension names.")
    return tuple(require_choice(item, DIMENSIONS, "dimensions") for item in raw)


@dataclass(frozen=True)
class QueryDescriptor:
    site_url: str
    start_date: date
    end_date: date
    dimensions: tuple[str, ...] = ()
    filter_groups: tuple[FilterGroup, ...] = ()
    row_limit: int = 1000
    start_row: int = 0
    data_state: str | None = None
    aggregation_type: str | None = None

    def __post_init__(self) -> None:
        if not self.site_url:
            raise InvalidArgumentError("siteUrl is required.")
        if self.end_date < self.start_date:
            raise InvalidArgumentError("endDate must not be earlier than startDate.")
        if self.row_limit < 1:
            raise InvalidArgumentError("rowLimit must be at least 1.")
        if self.start_row < 0:
            raise InvalidArgumentError("startRow must not be negative.")

    def to_request_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "rowLimit": self.row_limit,
            "startRow": self.start_row,
        }
        if self.dimensions:
            body["dimensions"] = list(self.dimensions)
        if self.filter_groups:
            body["dimensionFilterGroups"] = [group.to_body() for group in self.filter_groups]
        if self.data_state:
            body["dataState"] = self.data_state
        if self.aggregation_type:
            body["aggregationType"] = self.aggregation_type
        return body

    @classmethod
    def from_args(cls, args: Mapping[str, Any], default_row_limit: int = 1000) -> "QueryDescriptor":
        """Validate a loosely typed tool argument bag.

        Row limits are capped at the per-call maximum here; only programmatic
        callers may ask for more and rely on pagination.
        """
        site_url = str(args.get("siteUrl") or "").strip()
        if not site_url:
            raise InvalidArgumentError("siteUrl is required.")

        row_limit = optional_int(args, "rowLimit", default_row_limit)
        if not 1 <= row_limit <= MAX_ROWS_PER_REQUEST:
            raise InvalidArgumentError(
                f"rowLimit must be between 1 and {MAX_ROWS_PER_REQUEST}, got {row_limit}."
            )
        start_row = optional_int(args, "startRow", 0)

        raw_groups = args.get("dimensionFilterGroups") or []
        if not isinstance(raw_groups, (list, tuple)):
            raise InvalidArgumentError("dimensionFilterGroups must be an array.")

        data_state = args.get("dataState")
        aggregation_type = args.get("aggregationType")
        return cls(
            site_url=site_url,
            start_date=parse_iso_date(args.get("startDate"), "startDate"),
            end_date=parse_iso_date(args.get("endDate"), "endDate"),
            dimensions=parse_dimensions(args.get("dimensions")),
            filter_groups=tuple(FilterGroup.from_args(group) for group in raw_groups),
            row_limit=row_limit,
            start_row=start_row,
            data_state=require_choice(data_state, DATA_STATES, "dataState") if data_state else None,
            aggregation_type=(
                require_choice(aggregation_type, AGGREGATION_TYPES, "aggregationType")
                if aggregation_type
                else None
            ),
        )


@dataclass(frozen=True)
class FormatOptions:
    format: str = "full"
    site_url: str | None = None

    @property
    def compact(self) -> bool:
        return self.format == "compact"

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "FormatOptions":
        fmt = require_choice(args.get("format") or "full", OUTPUT_FORMATS, "format")
        site_url = args.get("siteUrl")
        return cls(format=fmt, site_url=str(site_url) if site_url else None)


@dataclass(frozen=True)
class SiteInfo:
    site_url: str
    permission_level: str

    def as_dict(self) -> dict[str, str]:
        return {"siteUrl": self.site_url, "permissionLevel": self.permission_level}


@dataclass(frozen=True)
class SitemapInfo:
    path: str
    last_submitted: str | None = None
    is_pending: bool | None = None
    is_sitemaps_index: bool | None = None
    type: str | None = None
    last_downloaded: str | None = None
    warnings: int | None = None
    errors: int | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any], default_path: str = "") -> "SitemapInfo":
        warnings = payload.get("warnings")
        errors = payload.get("errors")
        return cls(
            path=payload.get("path") or default_path,
            last_submitted=payload.get("lastSubmitted") or None,
            is_pending=payload.get("isPending"),
            is_sitemaps_index=payload.get("isSitemapsIndex"),
            type=payload.get("type") or None,
            last_downloaded=payload.get("lastDownloaded") or None,
            # The API encodes int64 counters as strings.
            warnings=int(warnings) if warnings is not None else None,
            errors=int(errors) if errors is not None else None,
        )

    def as_dict(self) -> dict[str, Any]:
        payload = {
            "path": self.path,
            "lastSubmitted": self.last_submitted,
            "isPending": self.is_pending,
            "isSitemapsIndex": self.is_sitemaps_index,
            "type": self.type,
            "lastDownloaded": self.last_downloaded,
            "warnings": self.warnings,
            "errors": self.errors,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class Opportunity:
    query: str
    page: str | None
    clicks: int
    impressions: int
    ctr: float
    position: float
    potential_clicks: int

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": self.query}
        if self.page is not None:
            payload["page"] = self.page
        payload.update(
            {
                "clicks": self.clicks,
                "impressions": self.impressions,
                "ctr": self.ctr,
                "position": self.position,
                "potentialClicks": self.potential_clicks,
            }
        )
        return payload


@dataclass(frozen=True)
class CannibalizationPage:
    page: str
    clicks: int
    impressions: int
    ctr: float
    position: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "clicks": self.clicks,
            "impressions": self.impressions,
            "ctr": self.ctr,
            "position": self.position,
        }


@dataclass(frozen=True)
class CannibalizationIssue:
    query: str
    pages: tuple[CannibalizationPage, ...]
    total_impressions: int
    recommendation: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "pages": [page.as_dict() for page in self.pages],
            "totalImpressions": self.total_impressions,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class PeriodTotals:
    clicks: int = 0
    impressions: int = 0
    position_sum: float = 0.0
    weighted_position_sum: float = 0.0
    row_count: int = 0

    @classmethod
    def from_rows(cls, rows: tuple[AnalyticsRow, ...] | list[AnalyticsRow]) -> "PeriodTotals":
        return cls(
            clicks=sum(row.clicks for row in rows),
            impressions=sum(row.impressions for row in rows),
            position_sum=sum(row.position for row in rows),
            weighted_position_sum=sum(row.position * row.impressions for row in rows),
            row_count=len(rows),
        )

    @property
    def ctr(self) -> float:
        return self.clicks / self.impressions if self.impressions else 0.0

    @property
    def avg_position(self) -> float:
        return self.position_sum / self.row_count if self.row_count else 0.0

    @property
    def weighted_position(self) -> float:
        return self.weighted_position_sum / self.impressions if self.impressions else 0.0


@dataclass(frozen=True)
class InspectionOutcome:
    url: str
    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
