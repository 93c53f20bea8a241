"""Tests for reminders.toml loading, env var resolution and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from reminders.config import ConfigError, load_config, resolve_env_vars

pytestmark = pytest.mark.unit

MINIMAL = """
[platform]
base_url = "https://notify.example.test"
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(tmp_path: Path, content: str) -> Path:
    """Write *content* to reminders.toml inside *tmp_path* and return the directory."""
    (tmp_path / "reminders.toml").write_text(content)
    return tmp_path


# ---------------------------------------------------------------------------
# resolve_env_vars
# ---------------------------------------------------------------------------


class TestResolveEnvVars:
    def test_nested_values(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_TOKEN", "s3cret")
        data = {"platform": {"api_token": "${NOTIFY_TOKEN}", "hosts": ["${NOTIFY_TOKEN}", 3]}}
        expected = {"platform": {"api_token": "s3cret", "hosts": ["s3cret", 3]}}
        assert resolve_env_vars(data) == expected

    def test_missing_variables_reported_together(self, monkeypatch):
        monkeypatch.delenv("MISSING_ONE", raising=False)
        monkeypatch.delenv("MISSING_TWO", raising=False)
        with pytest.raises(ConfigError, match="MISSING_ONE, MISSING_TWO"):
            resolve_env_vars("${MISSING_ONE}:${MISSING_TWO}")


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        config = load_config(_write_toml(tmp_path, MINIMAL))

        assert config.platform.base_url == "https://notify.example.test"
        assert config.platform.api_token is None
        assert config.platform.timeout_s == 30.0
        assert config.platform.max_retries == 3
        assert config.binding.name == "default"
        assert config.binding.enabled is True
        assert config.binding.debounce_ms == 100
        assert config.binding.debounce_s == pytest.approx(0.1)
        assert config.binding.minutes_before == 15
        assert config.logging.level == "INFO"
        assert config.logging.format == "text"

    def test_full_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NOTIFY_TOKEN", "tok-123")
        config_dir = _write_toml(
            tmp_path,
            """
[reminders]
name = "family-calendar"
enabled = false
debounce_ms = 250
minutes_before = 30

[reminders.logging]
level = "debug"
format = "JSON"

[platform]
base_url = "https://notify.example.test/"
api_token = "${NOTIFY_TOKEN}"
timeout_s = 5
max_retries = 0
""",
        )

        config = load_config(config_dir / "reminders.toml")

        assert config.binding.name == "family-calendar"
        assert config.binding.enabled is False
        assert config.binding.debounce_s == pytest.approx(0.25)
        assert config.binding.minutes_before == 30
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.platform.api_token == "tok-123"
        assert config.platform.timeout_s == 5.0
        assert config.platform.max_retries == 0

    def test_blank_token_is_none(self, tmp_path):
        config = load_config(_write_toml(tmp_path, MINIMAL + 'api_token = "  "\n'))
        assert config.platform.api_token is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(_write_toml(tmp_path, "[platform\n"))

    def test_non_utf8_file(self, tmp_path):
        (tmp_path / "reminders.toml").write_bytes(b"[platform]\nbase_url = '\xff\xfe'\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(tmp_path)

    def test_token_from_unset_variable_is_none(self, tmp_path, monkeypatch):
        monkeypatch.delenv("REMINDERS_PLATFORM_TOKEN", raising=False)
        content = MINIMAL + 'api_token = "${REMINDERS_PLATFORM_TOKEN}"\n'

        config = load_config(_write_toml(tmp_path, content))

        assert config.platform.api_token is None

    def test_required_field_from_unset_variable_still_fails(self, tmp_path, monkeypatch):
        monkeypatch.delenv("REMINDERS_PLATFORM_URL", raising=False)
        with pytest.raises(ConfigError, match="REMINDERS_PLATFORM_URL"):
            load_config(
                _write_toml(tmp_path, '[platform]\nbase_url = "${REMINDERS_PLATFORM_URL}"\n')
            )

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("[reminders]\nname = 'x'\n", "Missing \\[platform\\]"),
            ("[platform]\ntimeout_s = 3\n", "platform.base_url"),
            (MINIMAL + "timeout_s = 0\n", "platform.timeout_s"),
            (MINIMAL + "max_retries = -1\n", "platform.max_retries"),
            (MINIMAL + "[reminders]\nenabled = 'yes'\n", "reminders.enabled"),
            (MINIMAL + "[reminders]\ndebounce_ms = true\n", "reminders.debounce_ms"),
            (MINIMAL + "[reminders]\nminutes_before = 'soon'\n", "reminders.minutes_before"),
            (MINIMAL + "[reminders]\nname = ' '\n", "reminders.name"),
            (MINIMAL + "[reminders.logging]\nformat = 'xml'\n", "reminders.logging.format"),
        ],
        ids=[
            "missing-platform",
            "missing-base-url",
            "zero-timeout",
            "negative-retries",
            "enabled-not-bool",
            "debounce-bool",
            "minutes-not-int",
            "blank-name",
            "bad-log-format",
        ],
    )
    def test_invalid_values(self, tmp_path, content, message):
        with pytest.raises(ConfigError, match=message):
            load_config(_write_toml(tmp_path, content))
