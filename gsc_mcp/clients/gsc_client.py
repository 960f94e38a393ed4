from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence, TypeVar

import httplib2
from google.auth.credentials import Credentials
from google.auth.exceptions import TransportError
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as UserCredentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gsc_mcp.config import ServerConfig
from gsc_mcp.models import (
    MAX_ROWS_PER_REQUEST,
    AnalyticsResponse,
    AnalyticsRow,
    QueryDescriptor,
    SiteInfo,
    SitemapInfo,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MESSAGE_HINTS = (
    "quota",
    "rate limit",
    "ratelimit",
    "econnreset",
    "etimedout",
    "enotfound",
    "connection reset",
    "timed out",
)


class RemoteError(RuntimeError):
    """A Search Console call failed, either permanently or after all retries."""

    def __init__(self, message: str, status: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable

    @property
    def not_found(self) -> bool:
        return self.status == 404


class SearchConsoleService(Protocol):
    """Raw Search Console operations returning API payload dicts."""

    def query(self, site_url: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def list_sites(self) -> dict[str, Any]: ...

    def get_site(self, site_url: str) -> dict[str, Any]: ...

    def list_sitemaps(self, site_url: str) -> dict[str, Any]: ...

    def get_sitemap(self, site_url: str, feedpath: str) -> dict[str, Any]: ...

    def submit_sitemap(self, site_url: str, feedpath: str) -> dict[str, Any]: ...

    def delete_sitemap(self, site_url: str, feedpath: str) -> dict[str, Any]: ...

    def inspect_url(self, site_url: str, inspection_url: str) -> dict[str, Any]: ...


class GoogleSearchConsoleService:
    """Search Console v1 over googleapiclient.

    httplib2 connections are not thread-safe, so each worker thread gets its
    own authorized HTTP object and discovery resource.
    """

    HTTP_TIMEOUT_SEC = 30

    def __init__(
        self,
        scopes: Sequence[str],
        credentials_path: str = "",
        oauth_client_secret_path: str = "",
        oauth_refresh_token: str = "",
        oauth_token_uri: str = "https://oauth2.googleapis.com/token",
        http_timeout_sec: int = HTTP_TIMEOUT_SEC,
    ) -> None:
        self.scopes = list(scopes)
        self.credentials_path = credentials_path
        self.oauth_client_secret_path = oauth_client_secret_path
        self.oauth_refresh_token = oauth_refresh_token
        self.oauth_token_uri = oauth_token_uri
        self.http_timeout_sec = http_timeout_sec
        self._credentials: Credentials | None = None
        self._credentials_lock = threading.Lock()
        self._local = threading.local()

    @classmethod
    def from_config(cls, config: ServerConfig) -> "GoogleSearchConsoleService":
        return cls(
            scopes=config.scopes,
            credentials_path=config.gsc_credentials_path,
            oauth_client_secret_path=config.gsc_oauth_client_secret_path,
            oauth_refresh_token=config.gsc_oauth_refresh_token,
            oauth_token_uri=config.gsc_oauth_token_uri,
            http_timeout_sec=config.http_timeout_sec,
        )

    def _resource(self):
        resource = getattr(self._local, "resource", None)
        if resource is not None:
            return resource

        with self._credentials_lock:
            if self._credentials is None:
                self._credentials = self._build_credentials()
            credentials = self._credentials

        http = AuthorizedHttp(
            credentials,
            http=httplib2.Http(timeout=self.http_timeout_sec),
        )
        resource = build("searchconsole", "v1", http=http, cache_discovery=False)
        self._local.resource = resource
        return resource

    def _build_credentials(self) -> Credentials:
        if self.credentials_path:
            payload = self._load_json(self.credentials_path)
            if payload.get("type") == "service_account":
                return service_account.Credentials.from_service_account_file(
                    self.credentials_path,
                    scopes=self.scopes,
                )
            return self._oauth_credentials_from_payload(payload)

        if self.oauth_client_secret_path:
            payload = self._load_json(self.oauth_client_secret_path)
            return self._oauth_credentials_from_payload(payload)

        raise RuntimeError(
            "Missing GSC credentials. Set GSC_CREDENTIALS_PATH (service account or oauth JSON) "
            "or set GSC_OAUTH_CLIENT_SECRET_PATH + GSC_OAUTH_REFRESH_TOKEN."
        )

    def _oauth_credentials_from_payload(self, payload: dict) -> UserCredentials:
        # OAuth JSON can be either {"installed": {...}} or {"web": {...}}.
        client_section = payload.get("installed") or payload.get("web") or payload
        client_id = client_section.get("client_id")
        client_secret = client_section.get("client_secret")
        token_uri = client_section.get("token_uri") or self.oauth_token_uri

        if not (client_id and client_secret):
            raise RuntimeError("OAuth client JSON is missing client_id/client_secret.")
        if not self.oauth_refresh_token:
            raise RuntimeError("Missing GSC_OAUTH_REFRESH_TOKEN for OAuth credentials.")

        return UserCredentials(
            token=None,
            refresh_token=self.oauth_refresh_token,
            token_uri=token_uri,
            client_id=client_id,
            client_secret=client_secret,
            scopes=self.scopes,
        )

    @staticmethod
    def _load_json(path_value: str) -> dict:
        path = Path(path_value)
        if not path.exists():
            raise RuntimeError(f"GSC credentials file not found: {path_value}")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Invalid JSON in credentials file: {path_value}") from exc

    def query(self, site_url: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._resource().searchanalytics().query(siteUrl=site_url, body=body).execute()

    def list_sites(self) -> dict[str, Any]:
        return self._resource().sites().list().execute()

    def get_site(self, site_url: str) -> dict[str, Any]:
        return self._resource().sites().get(siteUrl=site_url).execute()

    def list_sitemaps(self, site_url: str) -> dict[str, Any]:
        return self._resource().sitemaps().list(siteUrl=site_url).execute()

    def get_sitemap(self, site_url: str, feedpath: str) -> dict[str, Any]:
        return self._resource().sitemaps().get(siteUrl=site_url, feedpath=feedpath).execute()

    def submit_sitemap(self, site_url: str, feedpath: str) -> dict[str, Any]:
        return self._resource().sitemaps().submit(siteUrl=site_url, feedpath=feedpath).execute() or {}

    def delete_sitemap(self, site_url: str, feedpath: str) -> dict[str, Any]:
        return self._resource().sitemaps().delete(siteUrl=site_url, feedpath=feedpath).execute() or {}

    def inspect_url(self, site_url: str, inspection_url: str) -> dict[str, Any]:
        body = {"inspectionUrl": inspection_url, "siteUrl": site_url}
        return self._resource().urlInspection().index().inspect(body=body).execute()


def _http_status(exc: BaseException) -> int | None:
    if isinstance(exc, HttpError):
        status = getattr(exc.resp, "status", None)
        try:
            return int(status) if status is not None else None
        except (TypeError, ValueError):
            return None
    return None


def _has_retryable_hint(message: str) -> bool:
    message = message.lower()
    return any(hint in message for hint in RETRYABLE_MESSAGE_HINTS)


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, HttpError):
        status = _http_status(exc)
        if status is not None and (status == 429 or status >= 500):
            return True
        # str(HttpError) embeds the request URI, which carries the site URL.
        details = f"{getattr(exc, 'reason', '') or ''} {getattr(exc, 'error_details', '') or ''}"
        return _has_retryable_hint(details)
    if isinstance(exc, (TimeoutError, ConnectionError, httplib2.ServerNotFoundError, TransportError)):
        return True
    return _has_retryable_hint(str(exc))


class GSCClient:
    """Search Console client with quota-aware retries and transparent pagination."""

    MAX_RETRIES = 3
    RETRY_DELAY_SEC = 1.0

    def __init__(
        self,
        service: SearchConsoleService,
        max_retries: int = MAX_RETRIES,
        retry_delay_sec: float = RETRY_DELAY_SEC,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.service = service
        self.max_retries = max_retries
        self.retry_delay_sec = retry_delay_sec
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: ServerConfig) -> "GSCClient":
        return cls(
            service=GoogleSearchConsoleService.from_config(config),
            max_retries=config.max_retries,
            retry_delay_sec=config.retry_delay_sec,
        )

    def _with_retry(self, operation: Callable[[], T], label: str) -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except Exception as exc:
                retryable = is_retryable_error(exc)
                if not retryable or attempt >= self.max_retries:
                    raise RemoteError(str(exc), status=_http_status(exc), retryable=retryable) from exc
                delay = self.retry_delay_sec * (2**attempt)
                attempt += 1
                logger.warning(
                    "GSC %s failed (%s); retry %d/%d in %.1fs",
                    label,
                    exc,
                    attempt,
                    self.max_retries,
                    delay,
                )
                self._sleep(delay)

    def search_analytics(self, descriptor: QueryDescriptor) -> AnalyticsResponse:
        if descriptor.row_limit > MAX_ROWS_PER_REQUEST:
            return self._search_analytics_paginated(descriptor)

        payload = self._with_retry(
            lambda: self.service.query(descriptor.site_url, descriptor.to_request_body()),
            label="searchanalytics.query",
        )
        rows = tuple(AnalyticsRow.from_api(row) for row in payload.get("rows") or [])
        return AnalyticsResponse(
            rows=rows,
            aggregation_type=payload.get("responseAggregationType") or None,
        )

    def _search_analytics_paginated(self, descriptor: QueryDescriptor) -> AnalyticsResponse:
        rows: list[AnalyticsRow] = []
        start_row = descriptor.start_row
        aggregation_type: str | None = None

        while len(rows) < descriptor.row_limit:
            rows_to_fetch = min(MAX_ROWS_PER_REQUEST, descriptor.row_limit - len(rows))
            page = self.search_analytics(
                QueryDescriptor(
                    site_url=descriptor.site_url,
                    start_date=descriptor.start_date,
                    end_date=descriptor.end_date,
                    dimensions=descriptor.dimensions,
                    filter_groups=descriptor.filter_groups,
                    row_limit=rows_to_fetch,
                    start_row=start_row,
                    data_state=descriptor.data_state,
                    aggregation_type=descriptor.aggregation_type,
                )
            )
            if not page.rows:
                break

            rows.extend(page.rows)
            aggregation_type = page.aggregation_type
            logger.debug("Fetched %d/%d rows for %s", len(rows), descriptor.row_limit, descriptor.site_url)

            if len(page.rows) < rows_to_fetch:
                break
            start_row += rows_to_fetch

        return AnalyticsResponse(rows=tuple(rows), aggregation_type=aggregation_type)

    def list_sites(self) -> list[SiteInfo]:
        payload = self._with_retry(self.service.list_sites, label="sites.list")
        return [
            SiteInfo(
                site_url=entry.get("siteUrl") or "",
                permission_level=entry.get("permissionLevel") or "unknown",
            )
            for entry in payload.get("siteEntry") or []
        ]

    def get_site(self, site_url: str) -> SiteInfo | None:
        try:
            payload = self._with_retry(lambda: self.service.get_site(site_url), label="sites.get")
        except RemoteError as exc:
            if exc.not_found:
                return None
            raise
        return SiteInfo(
            site_url=payload.get("siteUrl") or site_url,
            permission_level=payload.get("permissionLevel") or "unknown",
        )

    def list_sitemaps(self, site_url: str) -> list[SitemapInfo]:
        payload = self._with_retry(
            lambda: self.service.list_sitemaps(site_url), label="sitemaps.list"
        )
        return [SitemapInfo.from_api(entry) for entry in payload.get("sitemap") or []]

    def get_sitemap(self, site_url: str, feedpath: str) -> SitemapInfo | None:
        try:
            payload = self._with_retry(
                lambda: self.service.get_sitemap(site_url, feedpath), label="sitemaps.get"
            )
        except RemoteError as exc:
            if exc.not_found:
                return None
            raise
        return SitemapInfo.from_api(payload, default_path=feedpath)

    def submit_sitemap(self, site_url: str, feedpath: str) -> None:
        self._with_retry(
            lambda: self.service.submit_sitemap(site_url, feedpath), label="sitemaps.submit"
        )

    def delete_sitemap(self, site_url: str, feedpath: str) -> None:
        self._with_retry(
            lambda: self.service.delete_sitemap(site_url, feedpath), label="sitemaps.delete"
        )

    def inspect_url(self, site_url: str, inspection_url: str) -> dict[str, Any]:
        return self._with_retry(
            lambda: self.service.inspect_url(site_url, inspection_url),
            label="urlInspection.index.inspect",
        )
