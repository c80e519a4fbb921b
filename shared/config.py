"""
Shared configuration management for the Weather Proxy.
"""

import math
import os
import re
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from shared.errors import ConfigurationError


DEFAULT_CONFIG_FILE = "config.yaml"
CONFIG_FILE_ENV = "WEATHER_CONFIG_FILE"

# Explicit config file for the settings currently being built (see get_config).
config_file_var: ContextVar[Optional[str]] = ContextVar("config_file", default=None)

# Nested YAML keys mapped onto flat settings fields.
_YAML_KEYS = {
    ("openweathermap", "api_key"): "openweathermap_api_key",
    ("openweathermap", "base_url"): "openweathermap_base_url",
    ("openweathermap", "timeout"): "upstream_timeout",
    ("cache", "expiration"): "cache_expiration",
    ("cache", "sweep_interval"): "cache_sweep_interval",
    ("server", "host"): "host",
    ("server", "port"): "port",
    ("log", "level"): "log_level",
    ("env",): "env",
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a duration string such as ``10m``, ``1h30m`` or ``250ms`` into seconds.

    A bare number is read as seconds. Negative durations are rejected.
    """
    text = str(value).strip()
    if not text:
        raise ConfigurationError("Empty duration", details={"value": value})

    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds) or seconds < 0:
            raise ConfigurationError("Invalid duration", details={"value": value})
        return seconds

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text) or position == 0:
        raise ConfigurationError(
            f"Invalid duration '{value}'",
            details={"value": value, "expected": "e.g. 300ms, 1.5s, 10m, 1h30m"},
        )
    return total


def load_yaml_config(path: Optional[str]) -> Dict[str, Any]:
    """Read a YAML config file and flatten it onto settings field names.

    A missing file yields an empty mapping; unreadable or malformed YAML is fatal.
    """
    if not path:
        return {}
    config_path = Path(path)
    if not config_path.is_file():
        return {}

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(
            f"Could not read config file {config_path}",
            details={"error": str(exc)},
        ) from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping",
            details={"type": type(raw).__name__},
        )

    flattened: Dict[str, Any] = {}
    for path_parts, field_name in _YAML_KEYS.items():
        node: Any = raw
        for part in path_parts:
            if not isinstance(node, dict) or part not in node:
                node = None
                break
            node = node[part]
        if node is not None:
            flattened[field_name] = node
    return flattened


class YamlConfigSource(PydanticBaseSettingsSource):
    """Settings source backed by the service's YAML config file."""

    def __init__(self, settings_cls: Type[BaseSettings], config_file: Optional[str]):
        super().__init__(settings_cls)
        self._values = load_yaml_config(config_file)

    def get_field_value(self, field, field_name: str) -> Tuple[Any, str, bool]:
        return self._values.get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return dict(self._values)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="WEATHER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Upstream provider
    openweathermap_api_key: str = Field(default="")
    openweathermap_base_url: str = Field(
        default="https://api.openweathermap.org/data/2.5/weather"
    )
    upstream_timeout: str = Field(default="10s")

    # Cache
    cache_expiration: str = Field(default="10m")
    cache_sweep_interval: str = Field(default="1m")

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        return str(value).lower()

    @field_validator("upstream_timeout", "cache_expiration", "cache_sweep_interval", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> str:
        # YAML reads "600" as an int; durations are kept as strings.
        return str(value)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        config_file = config_file_var.get() or os.getenv(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSource(settings_cls, config_file),
            file_secret_settings,
        )

    @property
    def cache_ttl_seconds(self) -> float:
        return parse_duration(self.cache_expiration)

    @property
    def sweep_interval_seconds(self) -> float:
        return parse_duration(self.cache_sweep_interval)

    @property
    def upstream_timeout_seconds(self) -> float:
        return parse_duration(self.upstream_timeout)

    def validate_startup(self) -> None:
        """Fail fast on configuration the service cannot run with."""
        if not self.openweathermap_api_key.strip():
            raise ConfigurationError(
                "OpenWeatherMap API key is not configured",
                details={"env": "WEATHER_OPENWEATHERMAP_API_KEY", "yaml": "openweathermap.api_key"},
            )
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError(
                "Cache expiration must be positive",
                details={"cache_expiration": self.cache_expiration},
            )
        if self.sweep_interval_seconds <= 0:
            raise ConfigurationError(
                "Cache sweep interval must be positive",
                details={"cache_sweep_interval": self.cache_sweep_interval},
            )
        if self.upstream_timeout_seconds <= 0:
            raise ConfigurationError(
                "Upstream timeout must be positive",
                details={"upstream_timeout": self.upstream_timeout},
            )


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str = "weather"
    port: int = 8080
    host: str = "0.0.0.0"


def get_config(
    service_name: str = "weather",
    config_file: Optional[str] = None,
    **overrides: Any,
) -> ServiceConfig:
    """Get configuration for a service, optionally reading a specific YAML file."""
    token = config_file_var.set(config_file)
    try:
        return ServiceConfig(service_name=service_name, **overrides)
    finally:
        config_file_var.reset(token)
