"""
crm_sync/config.py

Environment-driven runtime settings for the sync job.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from crm_sync.errors import ConfigurationError

# Zoho rejects upsert calls carrying more than 100 records.
ZOHO_MAX_RECORDS_PER_CALL = 100

ZOHO_DOMAINS: dict[str, dict[str, str]] = {
    "us": {"accounts": "https://accounts.zoho.com", "api": "https://www.zohoapis.com"},
    "eu": {"accounts": "https://accounts.zoho.eu", "api": "https://www.zohoapis.eu"},
    "in": {"accounts": "https://accounts.zoho.in", "api": "https://www.zohoapis.in"},
    "au": {"accounts": "https://accounts.zoho.com.au", "api": "https://www.zohoapis.com.au"},
    "jp": {"accounts": "https://accounts.zoho.jp", "api": "https://www.zohoapis.jp"},
    "ca": {"accounts": "https://accounts.zohocloud.ca", "api": "https://www.zohoapis.ca"},
}

LINK_STRATEGIES = frozenset({"revision", "trader_id", "tax_id"})

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_env_files(project_root: Path | None = None) -> None:
    """
    Load simple KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten.
    """

    root = project_root or Path(__file__).resolve().parents[1]
    for filename in (".env", ".env.local"):
        env_path = root / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUE_VALUES


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def clean_url(value: str | None) -> str:
    """
    Strip whitespace and stray surrounding quotes from a URL value.
    """

    return str(value or "").strip().strip('"').strip("'")


def parse_watermark_override(raw_value: str | int | None) -> int | None:
    """
    Parse an explicit watermark override; must be a non-negative integer.
    """

    if raw_value is None:
        return None
    if isinstance(raw_value, bool):
        raise ConfigurationError(f"Invalid watermark override: {raw_value!r}.")
    if isinstance(raw_value, int):
        value = raw_value
    else:
        text = raw_value.strip()
        if not text:
            return None
        try:
            value = int(text)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid watermark override '{text}': expected a non-negative integer."
            ) from exc
    if value < 0:
        raise ConfigurationError(f"Invalid watermark override {value}: must not be negative.")
    return value


@dataclass(frozen=True)
class GalaxySettings:
    """
    Source (Galaxy ERP) connection settings.
    """

    base_url: str
    username: str | None = None
    password: str | None = None
    ss_pid: str | None = None
    session_file: str = "./.session.json"
    customers_path: str = "/api/glx/views/Customer/custom/zh_Customers_fin"
    affiliates_path: str = "/api/glx/views/Customer/custom/ZH_AFFILIATE"


@dataclass(frozen=True)
class ZohoSettings:
    """
    Target (Zoho CRM) OAuth settings.
    """

    client_id: str | None = None
    client_secret: str | None = None
    refresh_token: str | None = None
    dc: str = "eu"

    @property
    def accounts_url(self) -> str:
        return _zoho_domain(self.dc)["accounts"]

    @property
    def api_url(self) -> str:
        return _zoho_domain(self.dc)["api"]


@dataclass(frozen=True)
class HTTPSettings:
    """
    Shared HTTP behavior for both systems.
    """

    timeout_seconds: float = 8.0
    affiliate_timeout_seconds: float = 20.0
    retry_backoff_seconds: float = 0.75
    token_refresh_margin_seconds: float = 10.0


@dataclass(frozen=True)
class SyncRunSettings:
    """
    Per-run options recognized by the orchestrator.
    """

    chunk_size: int = ZOHO_MAX_RECORDS_PER_CALL
    upsert_workers: int = 3
    link_workers: int = 4
    dev_limit: int = 0
    verbose: bool = False
    full_resync: bool = False
    watermark_override: int | None = None
    link_strategy: str = "revision"
    membership_field: str | None = None


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Cron scheduling for the long-running service.
    """

    enabled: bool = True
    cron: str = "*/15 * * * *"


def _zoho_domain(dc: str) -> dict[str, str]:
    domain = ZOHO_DOMAINS.get((dc or "").strip().lower())
    if domain is None:
        allowed = ", ".join(sorted(ZOHO_DOMAINS))
        raise ConfigurationError(f"Invalid ZOHO_DC '{dc}'. Use one of: {allowed}.")
    return domain


@lru_cache(maxsize=1)
def get_galaxy_settings() -> GalaxySettings:
    """
    Return cached Galaxy settings from environment variables.
    """

    return GalaxySettings(
        base_url=clean_url(_get_optional_str_env("BASE_URL")),
        username=_get_optional_str_env("AUTH_USERNAME"),
        password=_get_optional_str_env("AUTH_PASSWORD"),
        ss_pid=_get_optional_str_env("SS_PID_COOKIE"),
        session_file=_get_str_env("SESSION_FILE", "./.session.json"),
        customers_path=_get_str_env(
            "GALAXY_CUSTOMERS_PATH", "/api/glx/views/Customer/custom/zh_Customers_fin"
        ),
        affiliates_path=_get_str_env(
            "GALAXY_AFFILIATES_PATH", "/api/glx/views/Customer/custom/ZH_AFFILIATE"
        ),
    )


@lru_cache(maxsize=1)
def get_zoho_settings() -> ZohoSettings:
    """
    Return cached Zoho OAuth settings from environment variables.
    """

    return ZohoSettings(
        client_id=_get_optional_str_env("ZOHO_CLIENT_ID"),
        client_secret=_get_optional_str_env("ZOHO_CLIENT_SECRET"),
        refresh_token=_get_optional_str_env("ZOHO_REFRESH_TOKEN"),
        dc=_get_str_env("ZOHO_DC", "eu").lower(),
    )


@lru_cache(maxsize=1)
def get_http_settings() -> HTTPSettings:
    """
    Return shared HTTP settings; millisecond env values are converted to seconds.
    """

    return HTTPSettings(
        timeout_seconds=max(1.0, _get_int_env("TIMEOUT_MS", 8000) / 1000.0),
        affiliate_timeout_seconds=max(1.0, _get_int_env("AFFILIATE_TIMEOUT_MS", 20000) / 1000.0),
        retry_backoff_seconds=max(0.0, _get_int_env("RETRY_BACKOFF_MS", 750) / 1000.0),
        token_refresh_margin_seconds=max(0.0, _get_float_env("TOKEN_REFRESH_MARGIN_SECONDS", 10.0)),
    )


def get_debug_enabled() -> bool:
    """Return the `DEBUG` flag without parsing the other run options."""
    return _get_bool_env("DEBUG", False)


@lru_cache(maxsize=1)
def get_sync_run_settings() -> SyncRunSettings:
    """
    Return run options from environment variables.

    Raises ConfigurationError for an unparsable watermark override.
    """

    dev_limit = 1 if _get_bool_env("DEV_ONE_ITEM", False) else max(0, _get_int_env("DEV_LIMIT", 0))
    return SyncRunSettings(
        chunk_size=clamp_chunk_size(_get_int_env("SYNC_CHUNK_SIZE", ZOHO_MAX_RECORDS_PER_CALL)),
        upsert_workers=max(1, _get_int_env("SYNC_UPSERT_WORKERS", 3)),
        link_workers=max(1, _get_int_env("SYNC_LINK_WORKERS", 4)),
        dev_limit=dev_limit,
        verbose=get_debug_enabled(),
        full_resync=_get_bool_env("SYNC_FULL_RESYNC", False),
        watermark_override=parse_watermark_override(_get_optional_str_env("SYNC_WATERMARK_OVERRIDE")),
        link_strategy=_get_str_env("SYNC_LINK_STRATEGY", "revision").lower(),
        membership_field=_get_optional_str_env("AFFILIATE_MEMBERSHIP_FIELD"),
    )


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """
    Return scheduler settings from environment variables.
    """

    return SchedulerSettings(
        enabled=_get_bool_env("SYNC_SCHEDULER_ENABLED", True),
        cron=_get_str_env("CRON", "*/15 * * * *"),
    )


def clamp_chunk_size(value: int) -> int:
    return min(ZOHO_MAX_RECORDS_PER_CALL, max(1, value))


def validate_settings(
    *,
    galaxy: GalaxySettings,
    zoho: ZohoSettings,
    run: SyncRunSettings,
    scheduler: SchedulerSettings | None = None,
) -> None:
    """
    Validate settings before any network activity.

    Collects every problem and raises a single ConfigurationError so the
    operator can fix all of them in one cycle.
    """

    errors: list[str] = []

    if not galaxy.base_url:
        errors.append("BASE_URL is not set (e.g. BASE_URL=http://192.168.0.135, no quotes).")
    else:
        parsed = urlparse(galaxy.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            errors.append(f"Invalid BASE_URL value: '{galaxy.base_url}'.")

    if not galaxy.username or not galaxy.password:
        errors.append("Missing AUTH_USERNAME and/or AUTH_PASSWORD.")

    if not zoho.client_id or not zoho.client_secret or not zoho.refresh_token:
        errors.append("Missing Zoho OAuth env: ZOHO_CLIENT_ID, ZOHO_CLIENT_SECRET, ZOHO_REFRESH_TOKEN.")

    if zoho.dc not in ZOHO_DOMAINS:
        errors.append(f"Invalid ZOHO_DC '{zoho.dc}'. Use one of: {', '.join(sorted(ZOHO_DOMAINS))}.")

    if run.link_strategy not in LINK_STRATEGIES:
        errors.append(
            f"Invalid SYNC_LINK_STRATEGY '{run.link_strategy}'. "
            f"Allowed values: {sorted(LINK_STRATEGIES)}."
        )

    if run.watermark_override is not None and run.watermark_override < 0:
        errors.append(f"Invalid watermark override {run.watermark_override}: must not be negative.")

    if scheduler is not None and scheduler.enabled:
        cron_error = _validate_cron(scheduler.cron)
        if cron_error:
            errors.append(cron_error)

    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
        )


def _validate_cron(expression: str) -> str | None:
    from apscheduler.triggers.cron import CronTrigger

    try:
        CronTrigger.from_crontab(expression, timezone="UTC")
    except ValueError as exc:
        return f"Invalid CRON expression '{expression}': {exc}"
    return None


def clear_settings_cache() -> None:
    """
    Drop cached settings so the next getter call re-reads the environment.
    """

    for getter in (
        get_galaxy_settings,
        get_zoho_settings,
        get_http_settings,
        get_sync_run_settings,
        get_scheduler_settings,
    ):
        getter.cache_clear()
