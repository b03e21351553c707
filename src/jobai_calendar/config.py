"""Service configuration loading and validation.

Reads ``jobai.toml`` (or the file named by ``JOBAI_CALENDAR_CONFIG``), resolves
``${VAR}`` references against the environment, and returns a validated
``AppConfig``.  Without a config file every section falls back to its
defaults, with OAuth client credentials taken from the conventional
``GOOGLE_*`` / ``MICROSOFT_*`` environment variables.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path
from typing import Any

from croniter import croniter

from jobai_calendar.calendar.timezones import WorkingHours, is_valid_timezone

CONFIG_ENV_VAR = "JOBAI_CALENDAR_CONFIG"
DEFAULT_CONFIG_FILENAME = "jobai.toml"

# Pattern matching ${VAR_NAME}: supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_HHMM_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class ConfigError(Exception):
    """Raised when service configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=list)


@dataclass
class OAuthClientConfig:
    """OAuth2 client registration for one provider."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    tenant: str = "common"

    def __repr__(self) -> str:
        return (
            f"OAuthClientConfig(client_id={self.client_id!r}, "
            f"redirect_uri={self.redirect_uri!r}, tenant={self.tenant!r})"
        )


@dataclass
class CalendarConfig:
    """Calendar sync behaviour from the [calendar] section."""

    default_timezone: str = "UTC"
    sync_window_months: int = 3
    provider_timeout_seconds: float = 30.0
    stale_after_minutes: int = 60
    max_rate_limit_retries: int = 3
    retry_backoff_seconds: float = 1.0
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    google: OAuthClientConfig = field(default_factory=OAuthClientConfig)
    outlook: OAuthClientConfig = field(default_factory=OAuthClientConfig)


@dataclass
class SchedulerConfig:
    enabled: bool = True
    cron: str = "0 * * * *"


@dataclass
class AppConfig:
    database_name: str = "jobai"
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict, key: str, parent: str | None = None) -> dict:
    value = data.get(key, {})
    if not isinstance(value, dict):
        name = f"{parent}.{key}" if parent else key
        raise ConfigError(f"[{name}] must be a table")
    return value


def _parse_hhmm(value: Any, field_name: str) -> time:
    match = _HHMM_PATTERN.fullmatch(str(value).strip())
    if match is None:
        raise ConfigError(f"{field_name} must be HH:MM, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def _parse_logging(data: dict) -> LoggingConfig:
    section = _section(data, "logging")
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"logging.format must be 'text' or 'json', got {fmt!r}")
    log_root = section.get("log_root")
    return LoggingConfig(level=level, format=fmt, log_root=str(log_root) if log_root else None)


def _parse_server(data: dict) -> ServerConfig:
    section = _section(data, "server")
    origins = section.get("cors_origins", [])
    if not isinstance(origins, list):
        raise ConfigError("server.cors_origins must be a list of strings")
    try:
        port = int(section.get("port", 8000))
    except (TypeError, ValueError) as exc:
        raise ConfigError("server.port must be an integer") from exc
    return ServerConfig(
        host=str(section.get("host", "0.0.0.0")),
        port=port,
        cors_origins=[str(origin) for origin in origins],
    )


def _oauth_from_env(prefix: str, provider: str) -> OAuthClientConfig:
    return OAuthClientConfig(
        client_id=os.environ.get(f"{prefix}_CLIENT_ID", ""),
        client_secret=os.environ.get(f"{prefix}_CLIENT_SECRET", ""),
        redirect_uri=os.environ.get(
            f"{prefix}_REDIRECT_URI",
            f"http://localhost:3000/calendar/callback/{provider}",
        ),
        tenant=os.environ.get(f"{prefix}_TENANT_ID", "common"),
    )


def _parse_oauth(section: dict, defaults: OAuthClientConfig) -> OAuthClientConfig:
    return OAuthClientConfig(
        client_id=str(section.get("client_id", defaults.client_id)),
        client_secret=str(section.get("client_secret", defaults.client_secret)),
        redirect_uri=str(section.get("redirect_uri", defaults.redirect_uri)),
        tenant=str(section.get("tenant", defaults.tenant)),
    )


def _parse_calendar(data: dict) -> CalendarConfig:
    section = _section(data, "calendar")

    default_timezone = str(section.get("default_timezone", "UTC"))
    if not is_valid_timezone(default_timezone):
        raise ConfigError(
            f"calendar.default_timezone is not a valid timezone: {default_timezone!r}"
        )

    hours_section = _section(section, "working_hours", "calendar")
    hours_timezone = str(hours_section.get("timezone", default_timezone))
    try:
        working_hours = WorkingHours(
            start=_parse_hhmm(hours_section.get("start", "09:00"), "calendar.working_hours.start"),
            end=_parse_hhmm(hours_section.get("end", "18:00"), "calendar.working_hours.end"),
            timezone=hours_timezone,
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid [calendar.working_hours]: {exc}") from exc

    try:
        sync_window_months = int(section.get("sync_window_months", 3))
        provider_timeout = float(section.get("provider_timeout_seconds", 30.0))
        stale_after = int(section.get("stale_after_minutes", 60))
        max_retries = int(section.get("max_rate_limit_retries", 3))
        backoff = float(section.get("retry_backoff_seconds", 1.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid numeric value in [calendar]: {exc}") from exc

    if sync_window_months < 1:
        raise ConfigError("calendar.sync_window_months must be >= 1")
    if provider_timeout <= 0:
        raise ConfigError("calendar.provider_timeout_seconds must be positive")
    if stale_after < 1:
        raise ConfigError("calendar.stale_after_minutes must be >= 1")
    if max_retries < 0 or backoff < 0:
        raise ConfigError("calendar retry settings must be non-negative")

    return CalendarConfig(
        default_timezone=default_timezone,
        sync_window_months=sync_window_months,
        provider_timeout_seconds=provider_timeout,
        stale_after_minutes=stale_after,
        max_rate_limit_retries=max_retries,
        retry_backoff_seconds=backoff,
        working_hours=working_hours,
        google=_parse_oauth(
            _section(section, "google", "calendar"), _oauth_from_env("GOOGLE", "google")
        ),
        outlook=_parse_oauth(
            _section(section, "outlook", "calendar"), _oauth_from_env("MICROSOFT", "outlook")
        ),
    )


def _parse_scheduler(data: dict) -> SchedulerConfig:
    section = _section(data, "scheduler")
    cron = str(section.get("cron", "0 * * * *"))
    if not croniter.is_valid(cron):
        raise ConfigError(f"scheduler.cron is not a valid cron expression: {cron!r}")
    return SchedulerConfig(enabled=bool(section.get("enabled", True)), cron=cron)


def parse_config(data: dict) -> AppConfig:
    """Build an ``AppConfig`` from already-parsed TOML data."""
    data = resolve_env_vars(data)
    database_section = _section(data, "database")
    return AppConfig(
        database_name=str(database_section.get("name", "jobai")),
        server=_parse_server(data),
        logging=_parse_logging(data),
        calendar=_parse_calendar(data),
        scheduler=_parse_scheduler(data),
    )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from *config_path*, ``$JOBAI_CALENDAR_CONFIG`` or ``./jobai.toml``.

    An explicitly requested file must exist; the implicit ``./jobai.toml`` is
    optional and defaults are used when it is absent.

    Raises
    ------
    ConfigError
        If the file is missing (when explicitly named), contains invalid
        TOML, or fails validation.
    """
    explicit = config_path is not None or bool(os.environ.get(CONFIG_ENV_VAR))
    path = config_path or Path(os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILENAME)

    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return parse_config({})

    try:
        data = tomllib.loads(path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    return parse_config(data)
