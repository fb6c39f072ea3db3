"""Bridge configuration loading and validation.

Parses ``bridge.toml`` files and resolves ``${VAR}`` environment references
before validating.  Missing optional sections fall back to the defaults
returned by :func:`default_config`.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
DEFAULT_CREDENTIAL_KEY = "gcp_service_account_json"
DEFAULT_HEARTBEAT_INTERVAL_S = 25.0
DEFAULT_PORT = 8787
CONFIG_FILE_NAME = "bridge.toml"

VALID_CREDENTIAL_BACKENDS = ("env", "file", "postgres")
VALID_LOG_FORMATS = ("text", "json")

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_SQL_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ConfigError(Exception):
    """Raised when bridge configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [bridge.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class CredentialsConfig:
    """Where the service-account JSON lives and how tokens are minted.

    ``backend`` selects the key-value store: ``env`` reads the upper-cased key
    from the process environment, ``file`` reads ``directory/<key>``, and
    ``postgres`` reads the ``value`` column of ``table`` through ``dsn``.
    """

    backend: str = "env"
    key: str = DEFAULT_CREDENTIAL_KEY
    directory: str | None = None
    dsn: str | None = None
    table: str = "kv_entries"
    scopes: tuple[str, ...] = (CALENDAR_SCOPE,)
    token_cache: bool = False


@dataclass
class PluginConfig:
    """Values published in ``/.well-known/ai-plugin.json``."""

    name_for_human: str = "Google Calendar"
    name_for_model: str = "google_calendar"
    description_for_human: str = "List, create and delete Google Calendar events."
    description_for_model: str = (
        "Use this to list upcoming Google Calendar events, create new events "
        "with a summary and RFC3339 start/end times, and delete events by id."
    )
    contact_email: str = "admin@example.com"
    legal_info_url: str = "https://example.com/legal"
    logo_url: str | None = None


@dataclass
class BridgeConfig:
    """Parsed and validated configuration for one bridge process."""

    name: str = "calendar-bridge"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    calendar_id: str = "primary"
    heartbeat_interval_s: float = DEFAULT_HEARTBEAT_INTERVAL_S
    http_timeout_s: float = 30.0
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    plugin: PluginConfig = field(default_factory=PluginConfig)


def default_config() -> BridgeConfig:
    """Return the configuration used when no ``bridge.toml`` is given."""
    return BridgeConfig()


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

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


def _require_section(parent: dict[str, Any], name: str) -> dict[str, Any]:
    section = parent.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"bridge.{name} must be a table")
    return section


def _non_empty_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field_name} must be a non-empty string")
    return value.strip()


def _positive_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        raise ConfigError(f"{field_name} must be a positive number")
    return float(value)


def _parse_credentials(section: dict[str, Any]) -> CredentialsConfig:
    defaults = CredentialsConfig()

    backend = str(section.get("backend", defaults.backend)).strip().lower()
    if backend not in VALID_CREDENTIAL_BACKENDS:
        raise ConfigError(
            f"Invalid bridge.credentials.backend: {backend!r}. "
            f"Expected one of: {', '.join(VALID_CREDENTIAL_BACKENDS)}"
        )

    key = _non_empty_str(section.get("key", defaults.key), "bridge.credentials.key")

    directory = section.get("directory")
    if backend == "file":
        directory = _non_empty_str(directory, "bridge.credentials.directory")

    dsn = section.get("dsn")
    table = _non_empty_str(section.get("table", defaults.table), "bridge.credentials.table")
    if backend == "postgres":
        dsn = _non_empty_str(dsn, "bridge.credentials.dsn")
        if _SQL_IDENTIFIER_PATTERN.fullmatch(table) is None:
            raise ConfigError(
                f"Invalid bridge.credentials.table: {table!r}. "
                "Expected a valid SQL identifier-style value."
            )

    raw_scopes = section.get("scopes", list(defaults.scopes))
    if not isinstance(raw_scopes, list) or not raw_scopes:
        raise ConfigError("bridge.credentials.scopes must be a non-empty list of strings")
    scopes = tuple(
        _non_empty_str(scope, "bridge.credentials.scopes entry") for scope in raw_scopes
    )

    token_cache = section.get("token_cache", defaults.token_cache)
    if not isinstance(token_cache, bool):
        raise ConfigError("bridge.credentials.token_cache must be a boolean")

    return CredentialsConfig(
        backend=backend,
        key=key,
        directory=directory,
        dsn=dsn,
        table=table,
        scopes=scopes,
        token_cache=token_cache,
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in VALID_LOG_FORMATS:
        raise ConfigError(
            f"Invalid bridge.logging.format: {log_format!r}. Expected 'text' or 'json'"
        )
    log_file = section.get("log_file")
    if log_file is not None:
        log_file = _non_empty_str(log_file, "bridge.logging.log_file")
    return LoggingConfig(level=level, format=log_format, log_file=log_file)


def _parse_plugin(section: dict[str, Any]) -> PluginConfig:
    defaults = PluginConfig()
    values: dict[str, Any] = {}
    for name in (
        "name_for_human",
        "name_for_model",
        "description_for_human",
        "description_for_model",
        "contact_email",
        "legal_info_url",
    ):
        values[name] = _non_empty_str(
            section.get(name, getattr(defaults, name)), f"bridge.plugin.{name}"
        )
    logo_url = section.get("logo_url")
    values["logo_url"] = (
        _non_empty_str(logo_url, "bridge.plugin.logo_url") if logo_url is not None else None
    )
    return PluginConfig(**values)


def parse_config(data: dict[str, Any]) -> BridgeConfig:
    """Validate an already-parsed TOML document and build a :class:`BridgeConfig`."""
    data = resolve_env_vars(data)

    bridge_section = data.get("bridge")
    if not isinstance(bridge_section, dict):
        raise ConfigError("Missing [bridge] section in config")

    defaults = BridgeConfig()

    name = _non_empty_str(bridge_section.get("name", defaults.name), "bridge.name")
    host = _non_empty_str(bridge_section.get("host", defaults.host), "bridge.host")

    port = bridge_section.get("port", defaults.port)
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(f"bridge.port must be an integer between 1 and 65535, got {port!r}")

    calendar_id = _non_empty_str(
        bridge_section.get("calendar_id", defaults.calendar_id), "bridge.calendar_id"
    )
    heartbeat_interval_s = _positive_number(
        bridge_section.get("heartbeat_interval_s", defaults.heartbeat_interval_s),
        "bridge.heartbeat_interval_s",
    )
    http_timeout_s = _positive_number(
        bridge_section.get("http_timeout_s", defaults.http_timeout_s),
        "bridge.http_timeout_s",
    )

    cors_origins = bridge_section.get("cors_origins", defaults.cors_origins)
    if not isinstance(cors_origins, list) or not all(
        isinstance(origin, str) for origin in cors_origins
    ):
        raise ConfigError("bridge.cors_origins must be a list of strings")

    return BridgeConfig(
        name=name,
        host=host,
        port=port,
        calendar_id=calendar_id,
        heartbeat_interval_s=heartbeat_interval_s,
        http_timeout_s=http_timeout_s,
        cors_origins=list(cors_origins),
        credentials=_parse_credentials(_require_section(bridge_section, "credentials")),
        logging=_parse_logging(_require_section(bridge_section, "logging")),
        plugin=_parse_plugin(_require_section(bridge_section, "plugin")),
    )


def load_config(config_path: Path) -> BridgeConfig:
    """Load and validate a bridge config file.

    Parameters
    ----------
    config_path:
        Path to a TOML file, or to a directory containing ``bridge.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    toml_path = config_path / CONFIG_FILE_NAME if config_path.is_dir() else config_path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
