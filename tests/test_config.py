from gsc_mcp.config import ServerConfig, normalize_property


_ENV_NAMES = (
    "GSC_CREDENTIALS_PATH",
    "GSC_SCOPE",
    "GSC_DEFAULT_PROPERTY",
    "GSC_HTTP_TIMEOUT_SEC",
    "GSC_MAX_RETRIES",
    "GSC_RETRY_DELAY_SEC",
    "GSC_BATCH_INSPECT_WORKERS",
    "LOG_LEVEL",
)


def _clear(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)
    config = ServerConfig.from_env()
    assert config.scope == "readonly"
    assert config.scopes == ["https://www.googleapis.com/auth/webmasters.readonly"]
    assert config.has_full_scope is False
    assert config.max_retries == 3
    assert config.retry_delay_sec == 1.0
    assert config.http_timeout_sec == 30
    assert config.batch_inspect_workers == 10
    assert config.default_property == ""
    assert config.log_level == "INFO"


def test_full_scope(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GSC_SCOPE", "FULL")
    config = ServerConfig.from_env()
    assert config.has_full_scope is True
    assert config.scopes == ["https://www.googleapis.com/auth/webmasters"]


def test_unknown_scope_falls_back_to_readonly(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GSC_SCOPE", "admin")
    assert ServerConfig.from_env().scope == "readonly"


def test_placeholder_value_falls_back_to_default(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GSC_MAX_RETRIES", "GSC_MAX_RETRIES=")
    assert ServerConfig.from_env().max_retries == 3


def test_batch_workers_are_clamped(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GSC_BATCH_INSPECT_WORKERS", "50")
    assert ServerConfig.from_env().batch_inspect_workers == 10
    monkeypatch.setenv("GSC_BATCH_INSPECT_WORKERS", "0")
    assert ServerConfig.from_env().batch_inspect_workers == 1


def test_default_property_bare_domain_becomes_domain_property(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("GSC_DEFAULT_PROPERTY", "Example.com")
    assert ServerConfig.from_env().default_property == "sc-domain:example.com"


def test_normalize_property_keeps_explicit_forms():
    assert normalize_property("https://example.com/") == "https://example.com/"
    assert normalize_property("sc-domain:example.com") == "sc-domain:example.com"
    assert normalize_property("") == ""
