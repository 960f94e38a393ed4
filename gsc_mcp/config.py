from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv


SCOPES: dict[str, tuple[str, ...]] = {
    "readonly": ("https://www.googleapis.com/auth/webmasters.readonly",),
    "full": ("https://www.googleapis.com/auth/webmasters",),
}


def load_env_file() -> None:
    try:
        load_dotenv(find_dotenv(usecwd=True), override=False)
    except Exception:
        pass


def _env(name: str, default: str = "") -> str:
    raw = os.environ.get(name)
    if raw is None:
        return default.strip()
    value = raw.strip()
    placeholder = f"{name}="
    unquoted = value.strip("'\"").strip()
    if unquoted.lower() == placeholder.lower():
        return default.strip()
    return value if value else default.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw else default


def _normalize_scope(raw: str) -> str:
    value = raw.strip().strip("'\"").lower()
    if value in {"full", "write", "readwrite"}:
        return "full"
    return "readonly"


def normalize_property(raw: str) -> str:
    value = raw.strip().strip("'\"")
    if not value or value.startswith("sc-domain:"):
        return value
    if not value.startswith(("http://", "https://")):
        return f"sc-domain:{value.lower()}"
    return value


@dataclass(frozen=True)
class ServerConfig:
    gsc_credentials_path: str = ""
    gsc_oauth_client_secret_path: str = ""
    gsc_oauth_refresh_token: str = ""
    gsc_oauth_token_uri: str = "https://oauth2.googleapis.com/token"
    scope: str = "readonly"
    default_property: str = ""
    http_timeout_sec: int = 30
    max_retries: int = 3
    retry_delay_sec: float = 1.0
    batch_inspect_workers: int = 10
    log_level: str = "INFO"

    @property
    def scopes(self) -> list[str]:
        return list(SCOPES[self.scope])

    @property
    def has_full_scope(self) -> bool:
        return self.scope == "full"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            gsc_credentials_path=_env("GSC_CREDENTIALS_PATH"),
            gsc_oauth_client_secret_path=_env("GSC_OAUTH_CLIENT_SECRET_PATH"),
            gsc_oauth_refresh_token=_env("GSC_OAUTH_REFRESH_TOKEN"),
            gsc_oauth_token_uri=_env(
                "GSC_OAUTH_TOKEN_URI", "https://oauth2.googleapis.com/token"
            ),
            scope=_normalize_scope(_env("GSC_SCOPE", "readonly")),
            default_property=normalize_property(_env("GSC_DEFAULT_PROPERTY")),
            http_timeout_sec=max(1, _env_int("GSC_HTTP_TIMEOUT_SEC", 30)),
            max_retries=max(0, _env_int("GSC_MAX_RETRIES", 3)),
            retry_delay_sec=max(0.0, _env_float("GSC_RETRY_DELAY_SEC", 1.0)),
            batch_inspect_workers=max(1, min(10, _env_int("GSC_BATCH_INSPECT_WORKERS", 10))),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )
