"""Analytics configuration resolution.

Resolves the analytics settings from four layers, lowest to highest precedence:

    default < config file < environment < explicit override

Config file (first existing of ~/.think-mcp/analytics.yaml, .yml, .json):

    enabled: true
    retentionDays: 30
    storagePath: ~/.think-mcp/analytics
    batchSize: 50
    flushIntervalMs: 30000

Environment variables:

    THINK_MCP_ANALYTICS_ENABLED         true/1/yes/on or false/0/no/off
    THINK_MCP_ANALYTICS_RETENTION_DAYS  positive integer
    THINK_MCP_ANALYTICS_STORAGE_PATH    non-empty path
    THINK_MCP_ANALYTICS_BATCH_SIZE      positive integer
    THINK_MCP_ANALYTICS_FLUSH_INTERVAL_MS  positive integer

Unparseable environment values are ignored. Values that parse but fail
validation are reported by validate() and replaced by their defaults in the
snapshot returned by get_config(), so a bad setting never breaks a tool call.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from think_mcp.paths import expand_path, get_config_path, get_global_dir

ConfigSource = Literal["default", "file", "env", "override"]

ENV_PREFIX = "THINK_MCP_ANALYTICS_"

# Field name -> (env suffix, file key)
_FIELDS: dict[str, tuple[str, str]] = {
    "enabled": ("ENABLED", "enabled"),
    "retention_days": ("RETENTION_DAYS", "retentionDays"),
    "storage_path": ("STORAGE_PATH", "storagePath"),
    "batch_size": ("BATCH_SIZE", "batchSize"),
    "flush_interval_ms": ("FLUSH_INTERVAL_MS", "flushIntervalMs"),
}

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})

MAX_RECOMMENDED_RETENTION_DAYS = 365
MAX_RECOMMENDED_BATCH_SIZE = 1000
MIN_FLUSH_INTERVAL_MS = 1000
MAX_RECOMMENDED_FLUSH_INTERVAL_MS = 300_000


def _default_storage_path() -> str:
    return str(get_global_dir() / "analytics")


class AnalyticsConfig(BaseModel):
    """Immutable analytics configuration snapshot."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(
        default=False, description="Whether analytics collection is enabled (opt-in)"
    )
    retention_days: int = Field(
        default=90, description="Days of partitions to keep before deletion"
    )
    storage_path: str = Field(
        default_factory=_default_storage_path,
        description="Directory holding daily analytics partitions",
    )
    batch_size: int = Field(
        default=50, description="Pending events that trigger an automatic flush"
    )
    flush_interval_ms: int = Field(
        default=30_000, description="Maximum time events wait in memory before a flush"
    )

    @property
    def resolved_storage_path(self) -> Path:
        """Storage path with ~ expanded."""
        return expand_path(self.storage_path)


class AnalyticsConfigError(ValueError):
    """Raised when a caller treats an invalid analytics configuration as fatal."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("Invalid analytics configuration:\n" + "\n".join(errors))


@dataclass
class ConfigValidationResult:
    """Outcome of validating a configuration."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": self.errors, "warnings": self.warnings}


@dataclass
class ResolvedConfig:
    """A configuration together with the layer each field came from."""

    config: AnalyticsConfig
    sources: dict[str, ConfigSource]

    def to_dict(self) -> dict[str, Any]:
        return {"config": self.config.model_dump(), "sources": dict(self.sources)}


# =============================================================================
# Parsing helpers
# =============================================================================


def parse_bool(value: str | None) -> bool | None:
    """Parse a boolean flag, returning None when the value is not recognised."""
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


def parse_positive_int(value: str | None) -> int | None:
    """Parse a strictly positive integer, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = int(value.strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def read_env_config(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Read analytics settings from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        Only the fields whose variables are set and valid
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}

    enabled = parse_bool(env.get(ENV_PREFIX + "ENABLED"))
    if enabled is not None:
        values["enabled"] = enabled

    for name in ("retention_days", "batch_size", "flush_interval_ms"):
        parsed = parse_positive_int(env.get(ENV_PREFIX + _FIELDS[name][0]))
        if parsed is not None:
            values[name] = parsed

    storage_path = env.get(ENV_PREFIX + "STORAGE_PATH", "").strip()
    if storage_path:
        values["storage_path"] = storage_path

    return values


def read_config_file(config_path: Path) -> dict[str, Any] | None:
    """Read analytics settings from a YAML or JSON config file.

    JSON is valid YAML, so both formats go through yaml.safe_load. Keys may
    be camelCase (canonical) or snake_case. Values of the wrong type are
    dropped individually.

    Returns:
        Recognised fields, or None if the file is missing or not a mapping
    """
    if not config_path.exists():
        return None
    try:
        with config_path.open() as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable analytics config {config_path}: {e}")
        return None

    if not isinstance(raw, dict):
        return None

    values: dict[str, Any] = {}
    for name, (_env, file_key) in _FIELDS.items():
        value = raw.get(file_key, raw.get(name))
        if value is None:
            continue
        if name == "enabled":
            if isinstance(value, bool):
                values[name] = value
        elif name == "storage_path":
            if isinstance(value, str):
                values[name] = value
        elif isinstance(value, int) and not isinstance(value, bool):
            values[name] = value
    return values


def write_config_file(config_path: Path, values: dict[str, Any]) -> None:
    """Write config values (camelCase keys) in the format implied by the suffix.

    Raises:
        OSError: If the file cannot be written
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = {_FIELDS[name][1]: value for name, value in values.items()}
    if config_path.suffix in (".yaml", ".yml"):
        content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    else:
        content = json.dumps(data, indent=2) + "\n"
    config_path.write_text(content, encoding="utf-8")


# =============================================================================
# Resolution and validation
# =============================================================================


def validate_config(config: AnalyticsConfig) -> ConfigValidationResult:
    """Validate a configuration.

    Produces one error per offending field; out-of-range but usable values
    are warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if config.retention_days < 1:
        errors.append(f"retentionDays must be at least 1 (got {config.retention_days})")
    elif config.retention_days > MAX_RECOMMENDED_RETENTION_DAYS:
        warnings.append(
            f"retentionDays of {config.retention_days} exceeds the recommended "
            f"maximum of {MAX_RECOMMENDED_RETENTION_DAYS}"
        )

    if not config.storage_path.strip():
        errors.append("storagePath must not be empty")

    if config.batch_size < 1:
        errors.append(f"batchSize must be at least 1 (got {config.batch_size})")
    elif config.batch_size > MAX_RECOMMENDED_BATCH_SIZE:
        warnings.append(
            f"batchSize of {config.batch_size} is very large and may use excessive memory"
        )

    if config.flush_interval_ms < MIN_FLUSH_INTERVAL_MS:
        errors.append(
            f"flushIntervalMs must be at least {MIN_FLUSH_INTERVAL_MS} "
            f"(got {config.flush_interval_ms})"
        )
    elif config.flush_interval_ms > MAX_RECOMMENDED_FLUSH_INTERVAL_MS:
        warnings.append(
            f"flushIntervalMs of {config.flush_interval_ms} means events may wait "
            "a long time before being persisted"
        )

    return ConfigValidationResult(valid=not errors, errors=errors, warnings=warnings)


def resolve_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ResolvedConfig:
    """Merge default, file, environment and override layers.

    Args:
        overrides: Explicit values, highest precedence
        config_path: Config file to read (default: get_config_path())
        environ: Environment mapping (default: os.environ)

    Returns:
        ResolvedConfig with per-field sources. The config is not validated.
    """
    values: dict[str, Any] = AnalyticsConfig().model_dump()
    sources: dict[str, ConfigSource] = dict.fromkeys(_FIELDS, "default")

    layers: list[tuple[ConfigSource, Mapping[str, Any] | None]] = [
        ("file", read_config_file(config_path or get_config_path())),
        ("env", read_env_config(environ)),
        ("override", overrides),
    ]
    for source, layer in layers:
        if not layer:
            continue
        for name, value in layer.items():
            if name in _FIELDS and value is not None:
                values[name] = value
                sources[name] = source

    return ResolvedConfig(config=AnalyticsConfig.model_construct(**values), sources=sources)


def _with_invalid_fields_defaulted(config: AnalyticsConfig) -> AnalyticsConfig:
    """Replace fields that fail validation with their default values."""
    defaults = AnalyticsConfig()
    fixes: dict[str, Any] = {}
    if config.retention_days < 1:
        fixes["retention_days"] = defaults.retention_days
    if not config.storage_path.strip():
        fixes["storage_path"] = defaults.storage_path
    if config.batch_size < 1:
        fixes["batch_size"] = defaults.batch_size
    if config.flush_interval_ms < MIN_FLUSH_INTERVAL_MS:
        fixes["flush_interval_ms"] = defaults.flush_interval_ms
    return config.model_copy(update=fixes) if fixes else config


# =============================================================================
# Config manager
# =============================================================================


class ConfigManager:
    """Caching front end for configuration resolution.

    One instance lives in the AnalyticsContext. The resolved snapshot is
    cached until an override changes or reload() is called.
    """

    def __init__(
        self,
        overrides: Mapping[str, Any] | None = None,
        *,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._overrides: dict[str, Any] = dict(overrides or {})
        self._config_path = config_path
        self._environ = environ
        self._cached: AnalyticsConfig | None = None

    @property
    def config_path(self) -> Path:
        return self._config_path or get_config_path()

    def get_config(self) -> AnalyticsConfig:
        """Get the cached configuration snapshot.

        Invalid fields are logged and fall back to defaults; use validate()
        or validate_or_raise() to surface them.
        """
        if self._cached is None:
            resolved = self.get_resolved_config()
            validation = validate_config(resolved.config)
            for error in validation.errors:
                logger.warning(f"Analytics config: {error}; using default")
            for warning in validation.warnings:
                logger.debug(f"Analytics config: {warning}")
            self._cached = _with_invalid_fields_defaulted(resolved.config)
        return self._cached

    def get_resolved_config(self) -> ResolvedConfig:
        """Resolve the configuration (uncached) with per-field sources."""
        return resolve_config(
            self._overrides, config_path=self._config_path, environ=self._environ
        )

    def is_enabled(self) -> bool:
        return self.get_config().enabled

    def set_override(self, key: str, value: Any) -> None:
        """Set a runtime override for one field.

        Raises:
            KeyError: If key is not a configuration field
        """
        if key not in _FIELDS:
            raise KeyError(f"Unknown analytics config field: {key}")
        self._overrides[key] = value
        self._cached = None

    def clear_overrides(self) -> None:
        self._overrides = {}
        self._cached = None

    def reload(self) -> None:
        """Drop the cached snapshot so the next read re-resolves all layers."""
        self._cached = None

    def validate(self) -> ConfigValidationResult:
        """Validate the merged configuration before default substitution."""
        return validate_config(self.get_resolved_config().config)

    def validate_or_raise(self) -> AnalyticsConfig:
        """Validate and return the configuration.

        Raises:
            AnalyticsConfigError: If any field is invalid
        """
        result = self.validate()
        if not result.valid:
            raise AnalyticsConfigError(result.errors)
        return self.get_config()

    def save(self) -> None:
        """Persist the fields set by the config file or by overrides.

        Values taken from environment variables stay out of the file.

        Raises:
            OSError: If the config file cannot be written
        """
        config = self.get_config()
        sources = self.get_resolved_config().sources
        to_save = {
            name: getattr(config, name)
            for name in _FIELDS
            if sources[name] in ("file", "override")
        }
        write_config_file(self.config_path, to_save)
        logger.debug(f"Saved analytics config to {self.config_path}")

    def enable(self) -> None:
        """Enable analytics and persist the setting."""
        self.set_override("enabled", True)
        self.save()

    def disable(self) -> None:
        """Disable analytics and persist the setting."""
        self.set_override("enabled", False)
        self.save()

    def get_storage_path(self) -> Path:
        return self.get_config().resolved_storage_path

    def ensure_storage_exists(self) -> Path:
        """Create the storage directory if needed and return it."""
        path = self.get_storage_path()
        path.mkdir(parents=True, exist_ok=True)
        return path
