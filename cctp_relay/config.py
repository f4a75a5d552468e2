"""
CCTP Relay Configuration

Configuration sources (in order of precedence):
    1. Environment variables (CCTP_RELAY_*)
    2. Runtime overrides (ConfigManager.set)
    3. YAML files passed to ConfigManager.load_from_file
    4. Default values

YAML documents are checked against CONFIG_SCHEMA before any value is
applied, so a bad file changes nothing.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

from cctp_relay.hardening import RelayError
from cctp_relay.observability import RelayLayer, configure_logging, get_logger

T = TypeVar("T")

logger = get_logger("config", RelayLayer.CONFIG)


class ConfigError(RelayError):
    """Configuration error."""
    code = "config_error"


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    code = "config_validation_error"


LOG_LEVELS = ("debug", "info", "warning", "error", "critical")
LOG_FORMATS = ("json", "text")
LEDGER_BACKENDS = ("memory",)

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "relay": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "local_domain": {"type": "integer", "minimum": 0, "maximum": 2**32 - 1},
                "relay_chain_id": {"type": "integer", "minimum": 0, "maximum": 2**16 - 1},
                "max_aux_payload_bytes": {"type": "integer", "minimum": 0, "maximum": 2**16 - 1},
            },
        },
        "ledger": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "backend": {"enum": list(LEDGER_BACKENDS)},
            },
        },
        "observability": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "log_level": {"enum": list(LOG_LEVELS)},
                "log_format": {"enum": list(LOG_FORMATS)},
            },
        },
    },
}


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value!r}")
        self._value = value

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        else:
            return value  # type: ignore


@dataclass
class RelayConfig:
    """Protocol parameters for this deployment."""
    local_domain: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=8,
        env_var="CCTP_RELAY_LOCAL_DOMAIN",
        description="Burn/mint domain of the local chain",
        validator=lambda x: 0 <= x < 2**32,
    ))
    relay_chain_id: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=21,
        env_var="CCTP_RELAY_CHAIN_ID",
        description="Message-relay chain ID of the local chain",
        validator=lambda x: 0 <= x < 2**16,
    ))
    max_aux_payload_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=2**16 - 1,
        env_var="CCTP_RELAY_MAX_AUX_PAYLOAD",
        description="Largest auxiliary payload accepted for publishing",
        validator=lambda x: 0 <= x < 2**16,
    ))


@dataclass
class LedgerConfig:
    """Replay ledger settings."""
    backend: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="memory",
        env_var="CCTP_RELAY_LEDGER_BACKEND",
        description="Replay ledger storage backend",
        validator=lambda x: x in LEDGER_BACKENDS,
    ))


@dataclass
class ObservabilityConfig:
    """Logging settings."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="CCTP_RELAY_LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        validator=lambda x: x in LOG_LEVELS,
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="CCTP_RELAY_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in LOG_FORMATS,
    ))


@dataclass
class RootConfig:
    """Root configuration aggregating all sections."""
    relay: RelayConfig = field(default_factory=RelayConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._config = RootConfig()
        self._config_paths: List[Path] = []
        self._validator = Draft202012Validator(CONFIG_SCHEMA)
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next instance starts from defaults."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> RootConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Malformed YAML in {path}: {e}") from e

        if data:
            self.apply(data)
        self._config_paths.append(path)
        logger.info("Configuration loaded", operation="load_from_file", path=str(path))

    def apply(self, data: Dict[str, Any]) -> None:
        """Validate a document against the schema, then apply it."""
        errors = sorted(self._validator.iter_errors(data), key=lambda e: list(e.path))
        if errors:
            messages = "; ".join(
                f"{'.'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors
            )
            raise ConfigValidationError(f"Invalid configuration: {messages}")

        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif isinstance(value, dict):
                    apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("relay.local_domain", 8)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("observability.log_level")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def validate(self) -> List[str]:
        """Returns list of validation errors, including environment overrides."""
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ValueError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors


def get_config() -> ConfigManager:
    """Get the configuration manager singleton."""
    return ConfigManager()


def configure_logging_from_config(config: Optional[ConfigManager] = None) -> None:
    """Install the package log handler using the configured level and format."""
    config = config or get_config()
    configure_logging(
        level=config.get("observability.log_level"),
        fmt=config.get("observability.log_format"),
    )
