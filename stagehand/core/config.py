"""Host Configuration.

Layered configuration built from prioritised in-memory sources and
``STAGEHAND_``-prefixed environment variables, then projected onto the
typed :class:`HostSettings` the host consumes. Nothing is read from disk.

Environment keys use a double underscore between section and key::

    STAGEHAND_SERVER__PORT=9000      -> server.port = 9000
    STAGEHAND_ENVIRONMENT=Development -> environment = "Development"
"""

from __future__ import annotations

import logging
import math
import os
import threading
from collections.abc import Callable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from typing import Any

from .errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "STAGEHAND_"
DEVELOPMENT = "Development"
PRODUCTION = "Production"
VALID_ENVIRONMENTS = (DEVELOPMENT, "Staging", PRODUCTION)
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG: dict[str, Any] = {
    "environment": PRODUCTION,
    "server": {"host": "127.0.0.1", "port": 5000, "shutdown_timeout": 5.0},
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
    "lifetime": {"stopped_delay": 0.0},
}


@dataclass
class ConfigSource:
    """Represents a configuration source."""

    name: str
    data: dict[str, Any]
    priority: int = 100  # Lower numbers are applied later and win


@dataclass
class ConfigValidationError:
    """Configuration validation error."""

    path: str
    message: str
    value: Any = None


def _coerce(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    return raw


def environment_overrides(
    environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX
) -> dict[str, Any]:
    """Turn ``PREFIX_SECTION__KEY=value`` variables into a nested dict."""
    environ = os.environ if environ is None else environ
    result: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        path = [part.lower() for part in key[len(prefix) :].split("__") if part]
        if not path:
            continue
        node = result
        for part in path[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                break
        else:
            node[path[-1]] = _coerce(value)
    return result


class ConfigurationManager:
    """Merges configuration sources and tracks validation errors."""

    def __init__(self, include_defaults: bool = True):
        self._config: dict[str, Any] = {}
        self._sources: list[ConfigSource] = []
        self._lock = threading.RLock()
        self._validation_errors: list[ConfigValidationError] = []
        self._change_callbacks: list[Callable[[str, Any, Any], None]] = []
        if include_defaults:
            self.add_source("defaults", DEFAULT_CONFIG, priority=1000)

    @property
    def validation_errors(self) -> list[ConfigValidationError]:
        with self._lock:
            return self._validation_errors.copy()

    def add_source(self, name: str, data: Mapping[str, Any], priority: int = 100) -> None:
        """Add an in-memory source. Lower priority numbers override higher ones."""
        with self._lock:
            self._sources = [s for s in self._sources if s.name != name]
            self._sources.append(ConfigSource(name, deepcopy(dict(data)), priority))
            self._sources.sort(key=lambda s: s.priority, reverse=True)
            LOGGER.debug("Added config source: %s (priority=%d)", name, priority)

    def add_environment(self, environ: Mapping[str, str] | None = None, priority: int = 10) -> None:
        """Add ``STAGEHAND_*`` environment variables as a source."""
        self.add_source("environment", environment_overrides(environ), priority=priority)

    def load(self) -> bool:
        """Merge all sources. Returns False when validation fails."""
        with self._lock:
            merged: dict[str, Any] = {}
            for source in self._sources:
                merged = self._merge(merged, source.data)
                LOGGER.debug("Merged config source: %s", source.name)

            self._validation_errors = self._validate(merged)
            if self._validation_errors:
                for error in self._validation_errors:
                    LOGGER.error("Invalid configuration at %s: %s", error.path, error.message)
                return False

            old_config, self._config = self._config, merged
            changes = _find_changes(old_config, merged) if old_config else []

        for path, old_value, new_value in changes:
            self._notify(path, old_value, new_value)
        LOGGER.debug("Configuration loaded from %d sources", len(self._sources))
        return True

    def _merge(self, base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = deepcopy(base)
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge(result[key], value)
            else:
                result[key] = deepcopy(value)
        return result

    def _validate(self, config: dict[str, Any]) -> list[ConfigValidationError]:
        errors: list[ConfigValidationError] = []

        environment = config.get("environment")
        if environment not in VALID_ENVIRONMENTS:
            errors.append(
                ConfigValidationError(
                    "environment",
                    f"Invalid environment: {environment}. Must be one of {list(VALID_ENVIRONMENTS)}",
                    environment,
                )
            )

        level = str(_dig(config, "logging.level", "INFO")).upper()
        if level not in VALID_LOG_LEVELS:
            errors.append(
                ConfigValidationError(
                    "logging.level",
                    f"Invalid logging level: {level}. Must be one of {list(VALID_LOG_LEVELS)}",
                    level,
                )
            )

        port = _dig(config, "server.port")
        if not isinstance(port, int) or isinstance(port, bool) or not 0 <= port <= 65535:
            errors.append(ConfigValidationError("server.port", "Port must be 0-65535", port))

        for path in ("server.shutdown_timeout", "lifetime.stopped_delay"):
            value = _dig(config, path, 0)
            if (
                not isinstance(value, (int, float))
                or isinstance(value, bool)
                or not math.isfinite(value)
                or value < 0
            ):
                errors.append(
                    ConfigValidationError(path, "Must be a finite non-negative number", value)
                )

        return errors

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation (e.g., 'server.port')."""
        with self._lock:
            return _dig(self._config, key, default)

    def get_section(self, section: str) -> dict[str, Any]:
        value = self.get(section, {})
        return deepcopy(value) if isinstance(value, dict) else {}

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            return deepcopy(self._config)

    def add_change_callback(self, callback: Callable[[str, Any, Any], None]) -> None:
        with self._lock:
            self._change_callbacks.append(callback)

    def _notify(self, path: str, old_value: Any, new_value: Any) -> None:
        for callback in list(self._change_callbacks):
            try:
                callback(path, old_value, new_value)
            except Exception:
                LOGGER.exception("Error in config change callback")


def _dig(config: Mapping[str, Any], key: str, default: Any = None) -> Any:
    value: Any = config
    for part in key.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return default
    return value


def _find_changes(old: dict[str, Any], new: dict[str, Any], path: str = "") -> list[tuple]:
    changes = []
    for key, new_value in new.items():
        current = f"{path}.{key}" if path else key
        if key not in old:
            changes.append((current, None, new_value))
        elif old[key] != new_value:
            if isinstance(old[key], dict) and isinstance(new_value, dict):
                changes.extend(_find_changes(old[key], new_value, current))
            else:
                changes.append((current, old[key], new_value))
    for key, old_value in old.items():
        if key not in new:
            changes.append((f"{path}.{key}" if path else key, old_value, None))
    return changes


@dataclass(frozen=True)
class HostSettings:
    """Typed view of the merged configuration used by the host."""

    environment: str = PRODUCTION
    host: str = "127.0.0.1"
    port: int = 5000
    shutdown_timeout: float = 5.0
    log_level: str = "INFO"
    log_format: str = DEFAULT_CONFIG["logging"]["format"]
    stopped_delay: float = 0.0

    @property
    def is_development(self) -> bool:
        return self.environment == DEVELOPMENT

    @property
    def show_error_details(self) -> bool:
        """Diagnostic detail in error responses only in Development."""
        return self.is_development

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_manager(cls, manager: ConfigurationManager) -> HostSettings:
        return cls(
            environment=manager.get("environment", PRODUCTION),
            host=str(manager.get("server.host", "127.0.0.1")),
            port=int(manager.get("server.port", 5000)),
            shutdown_timeout=float(manager.get("server.shutdown_timeout", 5.0)),
            log_level=str(manager.get("logging.level", "INFO")).upper(),
            log_format=str(manager.get("logging.format", cls.log_format)),
            stopped_delay=float(manager.get("lifetime.stopped_delay", 0.0)),
        )


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    command_line: Mapping[str, Any] | None = None,
) -> HostSettings:
    """Defaults < ``overrides`` < environment < ``command_line``.

    Raises ConfigurationError on invalid values.
    """
    manager = ConfigurationManager()
    if overrides:
        manager.add_source("overrides", overrides, priority=50)
    manager.add_environment(environ)
    if command_line:
        manager.add_source("command_line", command_line, priority=1)
    if not manager.load():
        details = "; ".join(f"{e.path}: {e.message}" for e in manager.validation_errors)
        raise ConfigurationError(f"Invalid configuration: {details}")
    return HostSettings.from_manager(manager)


__all__ = [
    "ConfigSource",
    "ConfigValidationError",
    "ConfigurationManager",
    "HostSettings",
    "DEFAULT_CONFIG",
    "DEVELOPMENT",
    "PRODUCTION",
    "environment_overrides",
    "load_settings",
]
