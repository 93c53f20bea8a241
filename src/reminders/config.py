"""Configuration loading and validation.

Reads a ``reminders.toml`` file, resolves ``${VAR}`` environment references,
and returns a validated ``RemindersConfig`` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_CONFIG_FILENAME = "reminders.toml"


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [reminders.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"


@dataclass
class BindingConfig:
    """Reconciliation settings from the [reminders] section."""

    name: str = "default"
    enabled: bool = True
    debounce_ms: int = 100
    minutes_before: int = 15

    @property
    def debounce_s(self) -> float:
        return self.debounce_ms / 1000


@dataclass
class PlatformConfig:
    """HTTP notification platform settings from the [platform] section."""

    base_url: str
    api_token: str | None = None
    timeout_s: float = 30.0
    max_retries: int = 3


@dataclass
class RemindersConfig:
    """Parsed and validated configuration."""

    platform: PlatformConfig
    binding: BindingConfig = field(default_factory=BindingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
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


def _resolve_optional(value: Any) -> Any:
    """Like ``resolve_env_vars`` but yields ``None`` when a referenced variable is unset."""
    try:
        return resolve_env_vars(value)
    except ConfigError:
        return None


def _non_negative_int(section: dict, key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a non-negative integer.")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid {path}.{key}: {raw!r}. Must be a non-negative integer."
        ) from exc
    if value < 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a non-negative integer.")
    return value


def _parse_binding(section: dict) -> BindingConfig:
    name = str(section.get("name", "default")).strip()
    if not name:
        raise ConfigError("reminders.name must be a non-empty string")

    enabled = section.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError(f"Invalid reminders.enabled: {enabled!r}. Expected true or false.")

    return BindingConfig(
        name=name,
        enabled=enabled,
        debounce_ms=_non_negative_int(section, "debounce_ms", 100, "reminders"),
        minutes_before=_non_negative_int(section, "minutes_before", 15, "reminders"),
    )


def _parse_logging(section: dict) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"Invalid reminders.logging.format: {fmt!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=level, format=fmt)


def _parse_platform(section: Any) -> PlatformConfig:
    if not isinstance(section, dict):
        raise ConfigError("Missing [platform] section in config")

    base_url = section.get("base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("Missing required field: platform.base_url")

    api_token = section.get("api_token")
    if api_token is not None and not isinstance(api_token, str):
        raise ConfigError("platform.api_token must be a string when set")
    if isinstance(api_token, str) and not api_token.strip():
        api_token = None

    try:
        timeout_s = float(section.get("timeout_s", 30.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid platform.timeout_s: {section.get('timeout_s')!r}") from exc
    if timeout_s <= 0:
        raise ConfigError(f"Invalid platform.timeout_s: {timeout_s!r}. Must be positive.")

    return PlatformConfig(
        base_url=base_url.strip(),
        api_token=api_token,
        timeout_s=timeout_s,
        max_retries=_non_negative_int(section, "max_retries", 3, "platform"),
    )


def load_config(path: Path) -> RemindersConfig:
    """Load and validate a config file.

    *path* may point at the TOML file itself or at a directory containing
    ``reminders.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid fields.
    """
    toml_path = Path(path)
    if toml_path.is_dir():
        toml_path = toml_path / DEFAULT_CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    # An optional token that references an unset variable is treated as absent.
    raw_token = None
    if isinstance(data.get("platform"), dict):
        raw_token = data["platform"].pop("api_token", None)

    data = resolve_env_vars(data)

    if isinstance(data.get("platform"), dict) and raw_token is not None:
        data["platform"]["api_token"] = _resolve_optional(raw_token)

    reminders_section = data.get("reminders", {})
    if not isinstance(reminders_section, dict):
        raise ConfigError("[reminders] must be a TOML table")

    logging_section = reminders_section.get("logging", {})
    if not isinstance(logging_section, dict):
        raise ConfigError("[reminders.logging] must be a TOML table")

    return RemindersConfig(
        platform=_parse_platform(data.get("platform")),
        binding=_parse_binding(reminders_section),
        logging=_parse_logging(logging_section),
    )
