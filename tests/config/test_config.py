"""Tests for jobai_calendar.config.

Covers:
- defaults when no config file exists
- explicit path / JOBAI_CALENDAR_CONFIG resolution
- ${VAR} environment substitution
- section parsing and validation errors
- OAuth credentials from GOOGLE_* / MICROSOFT_* environment variables
"""

from __future__ import annotations

from datetime import time
from pathlib import Path

import pytest

from jobai_calendar.config import (
    CONFIG_ENV_VAR,
    AppConfig,
    ConfigError,
    OAuthClientConfig,
    load_config,
    parse_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit

_OAUTH_ENV_VARS = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REDIRECT_URI",
    "MICROSOFT_CLIENT_ID",
    "MICROSOFT_CLIENT_SECRET",
    "MICROSOFT_REDIRECT_URI",
    "MICROSOFT_TENANT_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    for name in _OAUTH_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "jobai.toml"
    path.write_text(text)
    return path


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_defaults_without_file(self):
        config = load_config()
        assert isinstance(config, AppConfig)
        assert config.database_name == "jobai"
        assert config.server.port == 8000
        assert config.calendar.sync_window_months == 3
        assert config.calendar.working_hours.start == time(9)
        assert config.scheduler.enabled is True
        assert config.calendar.google.redirect_uri == (
            "http://localhost:3000/calendar/callback/google"
        )

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.toml")

    def test_env_var_points_at_missing_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "nope.toml"))
        with pytest.raises(ConfigError, match="not found"):
            load_config()

    def test_env_var_path_is_used(self, monkeypatch, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text('[database]\nname = "calendar_test"\n')
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().database_name == "calendar_test"

    def test_invalid_toml(self, tmp_path):
        path = _write(tmp_path, "[server\nport = 1")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)

    def test_full_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_GOOGLE_SECRET", "g-secret")
        path = _write(
            tmp_path,
            """
[server]
host = "127.0.0.1"
port = 9100
cors_origins = ["http://localhost:3000"]

[logging]
level = "debug"
format = "JSON"

[calendar]
default_timezone = "Europe/Berlin"
sync_window_months = 6
provider_timeout_seconds = 10
stale_after_minutes = 15

[calendar.working_hours]
start = "08:30"
end = "17:00"

[calendar.google]
client_id = "g-id"
client_secret = "${TEST_GOOGLE_SECRET}"
redirect_uri = "https://app.test/callback/google"

[calendar.outlook]
client_id = "o-id"
tenant = "contoso"

[scheduler]
enabled = false
cron = "*/15 * * * *"
""",
        )

        config = load_config(path)

        assert config.server.host == "127.0.0.1"
        assert config.server.port == 9100
        assert config.server.cors_origins == ["http://localhost:3000"]
        assert (config.logging.level, config.logging.format) == ("DEBUG", "json")
        calendar = config.calendar
        assert calendar.default_timezone == "Europe/Berlin"
        assert calendar.sync_window_months == 6
        assert calendar.provider_timeout_seconds == 10.0
        assert calendar.stale_after_minutes == 15
        assert calendar.working_hours.start == time(8, 30)
        assert calendar.working_hours.timezone == "Europe/Berlin"
        assert calendar.google.client_secret == "g-secret"
        assert calendar.outlook.tenant == "contoso"
        assert config.scheduler.enabled is False
        assert config.scheduler.cron == "*/15 * * * *"


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------


class TestEnvVars:
    def test_resolve_nested(self, monkeypatch):
        monkeypatch.setenv("A_VAR", "alpha")
        assert resolve_env_vars({"x": ["${A_VAR}", 3], "y": "pre-${A_VAR}"}) == {
            "x": ["alpha", 3],
            "y": "pre-alpha",
        }

    def test_missing_vars_reported_together(self, monkeypatch):
        monkeypatch.delenv("MISSING_ONE", raising=False)
        monkeypatch.delenv("MISSING_TWO", raising=False)
        with pytest.raises(ConfigError, match="MISSING_ONE, MISSING_TWO"):
            resolve_env_vars("${MISSING_ONE}:${MISSING_TWO}")

    def test_oauth_from_environment(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "env-google")
        monkeypatch.setenv("MICROSOFT_CLIENT_ID", "env-ms")
        monkeypatch.setenv("MICROSOFT_TENANT_ID", "tenant-x")

        calendar = parse_config({}).calendar

        assert calendar.google.client_id == "env-google"
        assert calendar.outlook.client_id == "env-ms"
        assert calendar.outlook.tenant == "tenant-x"

    def test_file_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "env-google")
        config = parse_config({"calendar": {"google": {"client_id": "file-google"}}})
        assert config.calendar.google.client_id == "file-google"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize(
        ("data", "message"),
        [
            ({"server": "nope"}, r"\[server\] must be a table"),
            ({"server": {"port": "eighty"}}, "server.port"),
            ({"server": {"cors_origins": "*"}}, "cors_origins"),
            ({"logging": {"format": "xml"}}, "logging.format"),
            ({"calendar": {"default_timezone": "Mars/Base"}}, "default_timezone"),
            ({"calendar": {"working_hours": {"start": "9am"}}}, "HH:MM"),
            (
                {"calendar": {"working_hours": {"start": "18:00", "end": "09:00"}}},
                "working_hours",
            ),
            ({"calendar": {"sync_window_months": 0}}, "sync_window_months"),
            ({"calendar": {"provider_timeout_seconds": 0}}, "provider_timeout_seconds"),
            ({"calendar": {"stale_after_minutes": "soon"}}, "numeric"),
            ({"calendar": {"retry_backoff_seconds": -1}}, "non-negative"),
            ({"scheduler": {"cron": "hourly"}}, "cron"),
        ],
    )
    def test_invalid_values(self, data, message):
        with pytest.raises(ConfigError, match=message):
            parse_config(data)


class TestOAuthClientConfig:
    def test_repr_hides_secret(self):
        oauth = OAuthClientConfig(client_id="cid", client_secret="super-secret")
        assert "super-secret" not in repr(oauth)
        assert "cid" in repr(oauth)
