"""Configuration loading and validation for infra_agent."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

SAMPLER_FAMILIES = ("cpu", "memory", "disk", "diskio", "network", "process")

_DEFAULT_INTERVALS = {
    "cpu": 1.0,
    "memory": 5.0,
    "disk": 10.0,
    "diskio": 1.0,
    "network": 1.0,
    "process": 10.0,
}


@dataclass
class ListenConfig:
    """Scrape endpoint settings."""

    host: str = "0.0.0.0"
    port: int = 8083


@dataclass
class SchedulerConfig:
    """Sampler scheduling and supervision settings."""

    source_timeout_seconds: float = 5.0
    restart_backoff_seconds: float = 1.0
    sink_interval_seconds: float = 10.0


@dataclass
class SamplerConfig:
    """Settings for one sampler family."""

    enabled: bool = True
    interval_seconds: float = 1.0
    all_partitions: bool = False
    interface: str = ""


@dataclass
class OtelExporterConfig:
    """OpenTelemetry push exporter settings."""

    enabled: bool = False
    endpoint: str = "http://localhost:4318"
    service_name: str = "infra-agent"
    headers: dict[str, str] = field(default_factory=dict)
    export_interval_ms: int = 10000


@dataclass
class LoggingConfig:
    level: str = "INFO"


def _default_samplers() -> dict[str, SamplerConfig]:
    return {name: SamplerConfig(interval_seconds=iv) for name, iv in _DEFAULT_INTERVALS.items()}


@dataclass
class AgentConfig:
    """Top-level infra_agent configuration."""

    listen: ListenConfig = field(default_factory=ListenConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    samplers: dict[str, SamplerConfig] = field(default_factory=_default_samplers)
    otel: OtelExporterConfig = field(default_factory=OtelExporterConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Raise :class:`ConfigError` on values the agent cannot run with."""
        port = _number("listen.port", self.listen.port, integer=True)
        if not 0 <= port <= 65535:
            raise ConfigError(f"listen.port out of range: {port}")
        if _number("scheduler.source_timeout_seconds", self.scheduler.source_timeout_seconds) <= 0:
            raise ConfigError("scheduler.source_timeout_seconds must be positive")
        if _number("scheduler.sink_interval_seconds", self.scheduler.sink_interval_seconds) <= 0:
            raise ConfigError("scheduler.sink_interval_seconds must be positive")
        if _number("scheduler.restart_backoff_seconds", self.scheduler.restart_backoff_seconds) < 0:
            raise ConfigError("scheduler.restart_backoff_seconds must not be negative")
        for name, sampler in self.samplers.items():
            if name not in SAMPLER_FAMILIES:
                raise ConfigError(f"unknown sampler family: {name!r}")
            if not isinstance(sampler.enabled, bool):
                raise ConfigError(f"samplers.{name}.enabled must be true or false")
            if _number(f"samplers.{name}.interval_seconds", sampler.interval_seconds) <= 0:
                raise ConfigError(f"samplers.{name}.interval_seconds must be positive")


def _number(key: str, value: Any, integer: bool = False) -> float:
    """Return *value* if it is a real number, else raise :class:`ConfigError`."""
    allowed = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, allowed):
        kind = "an integer" if integer else "a number"
        raise ConfigError(f"{key} must be {kind}, got {value!r}")
    return value


def _merge_dict(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *source* into *target*."""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge_dict(target[key], value)
        else:
            target[key] = value
    return target


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides using INFRA_AGENT_ prefix."""
    env_map = {
        "INFRA_AGENT_LISTEN_HOST": (("listen", "host"), str),
        "INFRA_AGENT_LISTEN_PORT": (("listen", "port"), int),
        "INFRA_AGENT_SOURCE_TIMEOUT": (("scheduler", "source_timeout_seconds"), float),
        "INFRA_AGENT_OTEL_ENABLED": (("otel", "enabled"), _to_bool),
        "INFRA_AGENT_OTEL_ENDPOINT": (("otel", "endpoint"), str),
        "INFRA_AGENT_LOG_LEVEL": (("logging", "level"), str),
    }
    for env_key, (path, convert) in env_map.items():
        value = os.environ.get(env_key)
        if value is None:
            continue
        obj = data
        for part in path[:-1]:
            obj = obj.setdefault(part, {})
            if not isinstance(obj, dict):
                raise ConfigError(f"{part} must be a mapping to apply {env_key}")
        try:
            obj[path[-1]] = convert(value)
        except ValueError as exc:
            raise ConfigError(f"invalid value for {env_key}: {value!r}") from exc
    return data


def _pick(cls: type, data: dict[str, Any]) -> Any:
    return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping, got {type(value).__name__}")
    return value


def _dict_to_config(data: dict[str, Any]) -> AgentConfig:
    """Convert a raw dictionary to an AgentConfig dataclass."""
    samplers_data = {name: {"interval_seconds": iv} for name, iv in _DEFAULT_INTERVALS.items()}
    for name, values in _section(data, "samplers").items():
        # A bare "cpu:" entry keeps the family's defaults.
        if values is None:
            values = {}
        if not isinstance(values, dict):
            raise ConfigError(f"samplers.{name} must be a mapping, got {type(values).__name__}")
        _merge_dict(samplers_data.setdefault(name, {}), values)

    return AgentConfig(
        listen=_pick(ListenConfig, _section(data, "listen")),
        scheduler=_pick(SchedulerConfig, _section(data, "scheduler")),
        samplers={
            name: _pick(SamplerConfig, values)
            for name, values in samplers_data.items()
        },
        otel=_pick(OtelExporterConfig, _section(data, "otel")),
        logging=_pick(LoggingConfig, _section(data, "logging")),
    )


def load_config(path: str | Path | None = None) -> AgentConfig:
    """Load configuration from a YAML file with environment overrides.

    Looks for ``infra_agent.yaml`` in the current directory if *path* is None.
    """
    data: dict[str, Any] = {}
    if path is None:
        path = Path("infra_agent.yaml")
    else:
        path = Path(path)

    if path.exists():
        with open(path, encoding="utf-8") as fh:
            try:
                loaded = yaml.safe_load(fh)
            except yaml.YAMLError as exc:
                raise ConfigError(f"cannot parse {path}: {exc}") from exc
        if isinstance(loaded, dict):
            data = loaded
        elif loaded is not None:
            raise ConfigError(f"{path} must contain a mapping, got {type(loaded).__name__}")

    data = _apply_env_overrides(data)
    cfg = _dict_to_config(data)
    cfg.validate()
    return cfg
