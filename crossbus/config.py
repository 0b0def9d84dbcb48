"""Configuration for crossbus.

Holds the replay limits and fault policy of a bus instance and loads
them from the environment.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from typing import Any

DEFAULT_REPLAY_CAPACITY = 50
DEFAULT_REPLAY_TTL = 30.0

ENV_PREFIX = "CROSSBUS_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(ValueError):
    """Raised when a bus setting is invalid."""

    def __init__(self, setting: str, value: Any, message: str | None = None):
        self.setting = setting
        self.value = value
        self.message = message or f"Invalid value for '{setting}': {value!r}"
        super().__init__(self.message)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_capacity(value: Any) -> int:
    """Return ``value`` as a capacity or raise ConfigurationError."""
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigurationError("replay_capacity", value, "replay_capacity must be a positive integer")
    return int(value)


def validate_ttl(value: Any) -> float:
    """Return ``value`` as a TTL in seconds or raise ConfigurationError."""
    if not _is_number(value) or not math.isfinite(value) or value <= 0:
        raise ConfigurationError("replay_ttl", value, "replay_ttl must be a positive number of seconds")
    return float(value)


@dataclass(frozen=True)
class BusConfig:
    """
    Configuration for one event bus.

    Args:
        replay_capacity: Maximum number of buffered events
        replay_ttl: Seconds a buffered event stays replayable
        strict_middleware: Veto the publish when a middleware raises
        max_fault_records: Faults kept by the default diagnostics sink
        log_level: Level passed to the logging setup
        json_logs: Render logs as JSON
    """

    replay_capacity: int = DEFAULT_REPLAY_CAPACITY
    replay_ttl: float = DEFAULT_REPLAY_TTL
    strict_middleware: bool = False
    max_fault_records: int = 100
    log_level: str = "INFO"
    json_logs: bool = False

    def __post_init__(self):
        object.__setattr__(self, "replay_capacity", validate_capacity(self.replay_capacity))
        object.__setattr__(self, "replay_ttl", validate_ttl(self.replay_ttl))
        if not _is_number(self.max_fault_records) or self.max_fault_records < 0:
            raise ConfigurationError("max_fault_records", self.max_fault_records)
        level = str(self.log_level).upper()
        if level not in _LOG_LEVELS:
            raise ConfigurationError("log_level", self.log_level)
        object.__setattr__(self, "log_level", level)

    def with_replay(self, capacity: int | None = None, ttl: float | None = None) -> BusConfig:
        """Return a validated copy with new replay limits."""
        changes: dict[str, Any] = {}
        if capacity is not None:
            changes["replay_capacity"] = capacity
        if ttl is not None:
            changes["replay_ttl"] = ttl
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "replay_capacity": self.replay_capacity,
            "replay_ttl": self.replay_ttl,
            "strict_middleware": self.strict_middleware,
            "max_fault_records": self.max_fault_records,
            "log_level": self.log_level,
            "json_logs": self.json_logs,
        }

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> BusConfig:
        """Load configuration from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            BusConfig instance
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if raw := env.get(f"{ENV_PREFIX}REPLAY_CAPACITY"):
            values["replay_capacity"] = _parse_number(raw, "replay_capacity", int)
        if raw := env.get(f"{ENV_PREFIX}REPLAY_TTL"):
            values["replay_ttl"] = _parse_number(raw, "replay_ttl", float)
        if raw := env.get(f"{ENV_PREFIX}MAX_FAULT_RECORDS"):
            values["max_fault_records"] = _parse_number(raw, "max_fault_records", int)
        if raw := env.get(f"{ENV_PREFIX}STRICT_MIDDLEWARE"):
            values["strict_middleware"] = _parse_flag(raw)
        if raw := env.get(f"{ENV_PREFIX}JSON_LOGS"):
            values["json_logs"] = _parse_flag(raw)
        if raw := env.get(f"{ENV_PREFIX}LOG_LEVEL"):
            values["log_level"] = raw.strip()

        return cls(**values)


def _parse_number(raw: str, setting: str, kind: type) -> Any:
    value = raw.strip().strip('"').strip("'")
    try:
        return kind(value)
    except ValueError:
        raise ConfigurationError(setting, raw) from None


def _parse_flag(raw: str) -> bool:
    return raw.strip().strip('"').strip("'").lower() in ("1", "true", "yes")
