"""Centralized application configuration with schema validation.

Two sources feed the shipper:
- process settings (``Settings``) read from a local ``.env`` file and the
  environment; legacy flat names (``DB_URL``) and nested names (``DB__URL``)
  are both accepted.
- the shipper configuration file (``ShipperConfig``), a JSON document naming
  the target table, the column mapping and optionally the connection.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from threading import Lock
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from contracts.errors import ConfigFileError
from version import DEFAULT_DELIMITER

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _parse_flag(value: object, default: bool) -> bool:
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    model_config = ConfigDict(frozen=True)

    url: str | None = Field(default=None, description="Postgres connection URL")
    pool_maxconn: int = Field(default=10, ge=1, le=100)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        text = str(value or "").strip().upper()
        if text in _LOG_LEVELS:
            return text
        return "INFO"


class DbMetricsConfig(BaseModel):
    """DB query instrumentation settings."""

    model_config = ConfigDict(frozen=True)

    metrics_enabled: bool = Field(default=True)
    slow_query_threshold_ms: float = Field(default=1000.0, ge=0.0)

    @field_validator("metrics_enabled", mode="before")
    @classmethod
    def _normalize_metrics_enabled(cls, value: object) -> bool:
        return _parse_flag(value, True)

    @field_validator("slow_query_threshold_ms", mode="before")
    @classmethod
    def _normalize_threshold_ms(cls, value: object) -> float:
        if value is None:
            return 1000.0
        text = str(value).strip()
        if text == "":
            return 1000.0
        try:
            parsed = float(text)
        except (TypeError, ValueError):
            return 1000.0
        return max(0.0, parsed)


class ShipperSettings(BaseModel):
    """CLI defaults that can come from the environment."""

    model_config = ConfigDict(frozen=True)

    config_path: str | None = Field(default=None)
    quiet: bool = Field(default=False)

    @field_validator("config_path", mode="before")
    @classmethod
    def _normalize_config_path(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("quiet", mode="before")
    @classmethod
    def _normalize_quiet(cls, value: object) -> bool:
        return _parse_flag(value, False)


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    db_metrics: DbMetricsConfig = Field(default_factory=DbMetricsConfig)
    shipper: ShipperSettings = Field(default_factory=ShipperSettings)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables."""
        runtime_env = os.environ if env is None else env
        merged_env = _merge_env(_load_dotenv(Path(env_file)), runtime_env)
        payload = _build_payload(merged_env)
        return cls.model_validate(payload)


class ShipperConfig(BaseModel):
    """Parsed shipper configuration file.

    ``table`` and ``columns`` stay optional here: their absence is reported
    by the query engine builder with a dedicated error, not as a schema
    failure. Connection fields left unset fall back to ``Settings.db``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    table: str | None = None
    columns: dict[str, Any] | None = None
    delimiter: str = Field(default=DEFAULT_DELIMITER)

    url: str | None = None
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    user: str | None = None
    password: str | None = None
    database: str | None = None
    pool_maxconn: int | None = Field(default=None, ge=1, le=100)
    connect_timeout: int | None = Field(default=None, ge=1, le=60)

    @field_validator("delimiter", mode="before")
    @classmethod
    def _validate_delimiter(cls, value: object) -> str:
        if value is None:
            return DEFAULT_DELIMITER
        text = str(value)
        if len(text) != 1:
            raise ValueError("delimiter must be a single character")
        return text

    def connection_kwargs(self, db: DatabaseConfig) -> dict[str, Any]:
        """Return psycopg2 connect keyword arguments.

        Discrete fields (host, user, ...) win over a URL; the file URL wins
        over ``DB_URL`` from the environment.
        """
        kwargs: dict[str, Any] = {
            "connect_timeout": self.connect_timeout or db.connect_timeout,
        }
        dsn = self.url or db.url
        if dsn:
            kwargs["dsn"] = dsn
        for key, value in (
            ("host", self.host),
            ("port", self.port),
            ("user", self.user),
            ("password", self.password),
            ("dbname", self.database),
        ):
            if value is not None:
                kwargs[key] = value
        return kwargs

    def pool_size(self, db: DatabaseConfig) -> int:
        return self.pool_maxconn or db.pool_maxconn


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    """``object_pairs_hook`` that refuses repeated keys (e.g. a column twice)."""
    out: dict[str, Any] = {}
    for key, value in pairs:
        if key in out:
            raise ConfigFileError(f"duplicate key {key!r} in configuration")
        out[key] = value
    return out


def parse_shipper_config(text: str) -> ShipperConfig:
    """Parse configuration JSON text into a ``ShipperConfig``."""
    try:
        payload = json.loads(text, object_pairs_hook=_reject_duplicate_keys)
    except json.JSONDecodeError as exc:
        raise ConfigFileError(f"configuration is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigFileError("configuration must be a JSON object")
    try:
        return ShipperConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigFileError(f"invalid configuration: {exc}") from exc


def load_shipper_config(path: str | Path | None) -> ShipperConfig:
    """Read and validate the shipper configuration file."""
    if path is None or str(path).strip() == "":
        raise ConfigFileError("no configuration file given (use --config)")
    cfg_path = Path(path)
    try:
        text = cfg_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigFileError(f"cannot read configuration file {cfg_path}: {exc}") from exc
    return parse_shipper_config(text)


def _load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal `.env` file format."""
    if not path.exists() or not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key_clean = key.strip()
        value = raw_value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key_clean:
            values[key_clean] = value
    return values


def _merge_env(dotenv_values: Mapping[str, str], runtime_env: Mapping[str, str]) -> dict[str, str]:
    """Return env map where process env overrides `.env` values."""
    merged = {str(k): str(v) for k, v in dotenv_values.items()}
    for key, value in runtime_env.items():
        merged[str(key)] = str(value)
    return merged


def _first_non_empty(env: Mapping[str, str], *keys: str) -> str | None:
    """Return the first non-empty value for the provided keys."""
    for key in keys:
        value = str(env.get(key, "")).strip()
        if value:
            return value
    return None


def _build_payload(env: Mapping[str, str]) -> dict[str, object]:
    """Build nested settings payload from env values."""
    db = {
        "url": _first_non_empty(env, "DB__URL", "DB_URL"),
        "pool_maxconn": _first_non_empty(env, "DB__POOL_MAXCONN", "DB_POOL_MAXCONN"),
        "connect_timeout": _first_non_empty(env, "DB__CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT"),
    }
    logging_settings = {
        "level": _first_non_empty(env, "LOGGING__LEVEL", "LOGSHIP_LOG_LEVEL"),
        "json_logs": _first_non_empty(env, "LOGGING__JSON_LOGS", "LOGSHIP_LOG_JSON"),
        "override_root_handlers": _first_non_empty(
            env, "LOGGING__OVERRIDE_ROOT_HANDLERS", "LOGSHIP_LOG_OVERRIDE"
        ),
    }
    db_metrics = {
        "metrics_enabled": _first_non_empty(env, "DB_METRICS__ENABLED", "DB_QUERY_METRICS_ENABLED"),
        "slow_query_threshold_ms": _first_non_empty(
            env, "DB_METRICS__SLOW_QUERY_THRESHOLD_MS", "DB_SLOW_QUERY_THRESHOLD_MS"
        ),
    }
    shipper = {
        "config_path": _first_non_empty(env, "SHIPPER__CONFIG_PATH", "LOGSHIP_CONFIG"),
        "quiet": _first_non_empty(env, "SHIPPER__QUIET", "LOGSHIP_QUIET"),
    }
    return {
        "db": {k: v for k, v in db.items() if v is not None},
        "logging": {k: v for k, v in logging_settings.items() if v is not None},
        "db_metrics": {k: v for k, v in db_metrics.items() if v is not None},
        "shipper": {k: v for k, v in shipper.items() if v is not None},
    }


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return cached settings, optionally forcing reload from env."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear in-process settings cache."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "DatabaseConfig",
    "DbMetricsConfig",
    "LoggingSettings",
    "Settings",
    "ShipperConfig",
    "ShipperSettings",
    "clear_settings_cache",
    "get_settings",
    "load_shipper_config",
    "parse_shipper_config",
    "ValidationError",
]
