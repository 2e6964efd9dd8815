"""Environment-driven configuration for the wiki graph service.

Goal: centralize all environment variable parsing + validation so the rest of the
codebase deals in typed config objects instead of raw strings.

Environment variables:
- WIKI_BASE_URL (required): e.g. "https://ordemparanormal.fandom.com"
- WIKI_API_URL (optional, default: "{WIKI_BASE_URL}/api.php")
- WIKI_DB_PATH (optional, default: wiki_graph.sqlite3)
- WIKI_DATABASE_URL (optional): SQLAlchemy URL, overrides WIKI_DB_PATH
- WIKI_HOST / WIKI_PORT (optional, default: 0.0.0.0 / 3000)
- WIKI_USER_AGENT (optional)
- WIKI_REQUEST_TIMEOUT, WIKI_MAX_RETRIES, WIKI_RETRY_BACKOFF_SECONDS (optional)
- WIKI_FETCH_CONCURRENCY, WIKI_FETCH_TIMEOUT (optional)
- WIKI_BUILD_CRON (optional, default: "0 3 * * *")
- WIKI_KEEP_BUILDS (optional, default: 3)
- WIKI_BUILD_ON_STARTUP (optional, default: off)
- WIKI_LOG_LEVEL (optional, default: INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from croniter import croniter

ENV_WIKI_BASE_URL = "WIKI_BASE_URL"
ENV_WIKI_API_URL = "WIKI_API_URL"
ENV_WIKI_DB_PATH = "WIKI_DB_PATH"
ENV_WIKI_DATABASE_URL = "WIKI_DATABASE_URL"
ENV_WIKI_HOST = "WIKI_HOST"
ENV_WIKI_PORT = "WIKI_PORT"
ENV_WIKI_USER_AGENT = "WIKI_USER_AGENT"
ENV_WIKI_REQUEST_TIMEOUT = "WIKI_REQUEST_TIMEOUT"
ENV_WIKI_MAX_RETRIES = "WIKI_MAX_RETRIES"
ENV_WIKI_RETRY_BACKOFF_SECONDS = "WIKI_RETRY_BACKOFF_SECONDS"
ENV_WIKI_FETCH_CONCURRENCY = "WIKI_FETCH_CONCURRENCY"
ENV_WIKI_FETCH_TIMEOUT = "WIKI_FETCH_TIMEOUT"
ENV_WIKI_BUILD_CRON = "WIKI_BUILD_CRON"
ENV_WIKI_KEEP_BUILDS = "WIKI_KEEP_BUILDS"
ENV_WIKI_BUILD_ON_STARTUP = "WIKI_BUILD_ON_STARTUP"
ENV_WIKI_LOG_LEVEL = "WIKI_LOG_LEVEL"

DEFAULT_DB_PATH = "wiki_graph.sqlite3"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_FETCH_CONCURRENCY = 8
DEFAULT_FETCH_TIMEOUT = 120.0
DEFAULT_BUILD_CRON = "0 3 * * *"
DEFAULT_KEEP_BUILDS = 3
DEFAULT_LOG_LEVEL = "INFO"

_DEFAULT_USER_AGENT = "wiki-graph-snapshot/1.0 (https://example.invalid; contact: you@example.invalid)"
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class WikiSourceConfig:
    """Connection settings for the MediaWiki Action API."""

    base_url: str
    api_url: str
    user_agent: str
    request_timeout: float
    max_retries: int
    retry_backoff_seconds: float


@dataclass(frozen=True)
class BuildConfig:
    cron: str
    keep_builds: int
    fetch_concurrency: int
    fetch_timeout: float
    run_on_startup: bool


@dataclass(frozen=True)
class AppConfig:
    wiki: WikiSourceConfig
    build: BuildConfig
    db_path: str
    database_url: str | None
    host: str
    port: int
    log_level: str


def _env_truthy(value: str | None) -> bool:
    """Interpret environment-variable style booleans.

    Truthy values: 1, true, t, yes, y, on (case-insensitive)
    """

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _require_env_str(name: str, example: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        raise SystemExit(f"Missing env var {name}. Example: set {name}={example}")
    return value.strip()


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _env_optional_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be an int (got {raw!r})") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be a float (got {raw!r})") from exc


def _require_http_url(name: str, value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise SystemExit(f"{name} must be an http(s) URL (got {value!r})")
    return value.rstrip("/")


def load_wiki_source_config_from_env() -> WikiSourceConfig:
    """Read the wiki source settings from WIKI_* environment variables."""

    base_url = _require_http_url(
        ENV_WIKI_BASE_URL,
        _require_env_str(ENV_WIKI_BASE_URL, "https://ordemparanormal.fandom.com"),
    )
    api_url = _require_http_url(ENV_WIKI_API_URL, _env_str(ENV_WIKI_API_URL, f"{base_url}/api.php"))

    request_timeout = _env_float(ENV_WIKI_REQUEST_TIMEOUT, DEFAULT_REQUEST_TIMEOUT)
    if request_timeout <= 0:
        raise SystemExit(f"{ENV_WIKI_REQUEST_TIMEOUT} must be > 0")

    max_retries = _env_int(ENV_WIKI_MAX_RETRIES, DEFAULT_MAX_RETRIES)
    if max_retries < 0:
        raise SystemExit(f"{ENV_WIKI_MAX_RETRIES} must be >= 0")

    backoff = _env_float(ENV_WIKI_RETRY_BACKOFF_SECONDS, DEFAULT_RETRY_BACKOFF_SECONDS)
    if backoff < 0:
        raise SystemExit(f"{ENV_WIKI_RETRY_BACKOFF_SECONDS} must be >= 0")

    return WikiSourceConfig(
        base_url=base_url,
        api_url=api_url,
        user_agent=_env_str(ENV_WIKI_USER_AGENT, _DEFAULT_USER_AGENT),
        request_timeout=request_timeout,
        max_retries=max_retries,
        retry_backoff_seconds=backoff,
    )


def load_build_config_from_env() -> BuildConfig:
    """Read build scheduling + fan-out settings."""

    cron = _env_str(ENV_WIKI_BUILD_CRON, DEFAULT_BUILD_CRON)
    if not croniter.is_valid(cron):
        raise SystemExit(f"{ENV_WIKI_BUILD_CRON} is not a valid cron expression (got {cron!r})")

    keep_builds = _env_int(ENV_WIKI_KEEP_BUILDS, DEFAULT_KEEP_BUILDS)
    if keep_builds < 0:
        raise SystemExit(f"{ENV_WIKI_KEEP_BUILDS} must be >= 0")

    concurrency = _env_int(ENV_WIKI_FETCH_CONCURRENCY, DEFAULT_FETCH_CONCURRENCY)
    if concurrency < 1:
        raise SystemExit(f"{ENV_WIKI_FETCH_CONCURRENCY} must be >= 1")

    fetch_timeout = _env_float(ENV_WIKI_FETCH_TIMEOUT, DEFAULT_FETCH_TIMEOUT)
    if fetch_timeout <= 0:
        raise SystemExit(f"{ENV_WIKI_FETCH_TIMEOUT} must be > 0")

    return BuildConfig(
        cron=cron,
        keep_builds=keep_builds,
        fetch_concurrency=concurrency,
        fetch_timeout=fetch_timeout,
        run_on_startup=_env_truthy(os.getenv(ENV_WIKI_BUILD_ON_STARTUP)),
    )


def load_app_config_from_env() -> AppConfig:
    """Load and validate the full service configuration from environment variables."""

    wiki = load_wiki_source_config_from_env()
    build = load_build_config_from_env()

    port = _env_int(ENV_WIKI_PORT, DEFAULT_PORT)
    if not 1 <= port <= 65535:
        raise SystemExit(f"{ENV_WIKI_PORT} must be between 1 and 65535 (got {port})")

    log_level = _env_str(ENV_WIKI_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()
    if log_level not in _LOG_LEVELS:
        raise SystemExit(f"{ENV_WIKI_LOG_LEVEL} must be one of {sorted(_LOG_LEVELS)} (got {log_level!r})")

    return AppConfig(
        wiki=wiki,
        build=build,
        db_path=_env_str(ENV_WIKI_DB_PATH, DEFAULT_DB_PATH),
        database_url=_env_optional_str(ENV_WIKI_DATABASE_URL),
        host=_env_str(ENV_WIKI_HOST, DEFAULT_HOST),
        port=port,
        log_level=log_level,
    )
