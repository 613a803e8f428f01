"""Core configuration management for zonebus agents.

This module provides the agent configuration model, YAML/environment
loading, and the per-entity lookups used by the scheduler and runtimes.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from zonebus.schemas.messages import Zone
from zonebus.utils.errors import ConfigurationError

# A configured frequency of 0 means "schedule the entity, but do no work".
DISABLED_FREQUENCY = 0
# Used when nothing is configured, and as the repeat interval of disabled entities.
FALLBACK_FREQUENCY = 3600
DEFAULT_STARTUP_DELAY_SECONDS = 10
DEFAULT_MAPPING_PROFILE = "Default"


class DebugLevel(str, Enum):
    """Agent debug verbosity as written in configuration files."""

    NONE = "NONE"
    MINIMAL = "MINIMAL"
    MODERATE = "MODERATE"
    DETAILED = "DETAILED"
    VERY_DETAILED = "VERY_DETAILED"
    ALL = "ALL"

    @classmethod
    def parse(cls, value: "str | DebugLevel") -> "DebugLevel":
        """Parse a configured debug level.

        Accepts any case and an optional ``DBG_`` prefix
        (``dbg_detailed`` and ``DETAILED`` are the same level).

        Raises:
            ConfigurationError: If the value names no known level
        """
        if isinstance(value, DebugLevel):
            return value

        name = str(value).strip().upper()
        if name.startswith("DBG_"):
            name = name[4:]
        try:
            return cls(name)
        except ValueError as e:
            valid = ", ".join(level.value for level in cls)
            raise ConfigurationError(
                f"Unknown debug level '{value}'. Must be one of: {valid}"
            ) from e

    @property
    def log_level(self) -> int:
        """The stdlib logging level this debug level corresponds to."""
        return _DEBUG_LOG_LEVELS[self]

    @property
    def is_detailed(self) -> bool:
        """Whether mapping and payload details should be logged."""
        return self in (DebugLevel.DETAILED, DebugLevel.VERY_DETAILED, DebugLevel.ALL)


_DEBUG_LOG_LEVELS = {
    DebugLevel.NONE: logging.WARNING,
    DebugLevel.MINIMAL: logging.INFO,
    DebugLevel.MODERATE: logging.INFO,
    DebugLevel.DETAILED: logging.DEBUG,
    DebugLevel.VERY_DETAILED: logging.DEBUG,
    DebugLevel.ALL: logging.DEBUG,
}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] | None = None
    format: Literal["json", "text"] = "json"
    enable_pii_redaction: bool = True
    log_file: str | None = None


class MetricsConfig(BaseModel):
    """Metrics configuration."""

    enabled: bool = False
    port: int = 8000


class TracingConfig(BaseModel):
    """Tracing configuration."""

    enabled: bool = False
    otlp_endpoint: str | None = None


class EntityConfig(BaseModel):
    """One configured publisher or subscriber."""

    implementation: str = Field(
        min_length=1,
        description="Registry key of the implementation to instantiate",
    )
    id: str | None = Field(
        default=None,
        description="Entity identifier; defaults to the implementation key's last segment",
    )
    event_frequency: float | None = Field(default=None, ge=0)
    sync_frequency: float | None = Field(default=None, ge=0)
    consumer_threads: int | None = Field(default=None, ge=1)
    queue_capacity: int | None = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")

    @property
    def entity_id(self) -> str:
        return self.id or self.implementation.rsplit(".", 1)[-1]


class AgentConfig(BaseModel):
    """Main configuration for one agent.

    Frequencies are in seconds. A frequency equal to ``DISABLED_FREQUENCY``
    keeps the entity scheduled but turns every tick into a no-op.
    """

    agent_id: str = "agent"
    application_id: str | None = None

    zones: list[Zone] = Field(default_factory=list)
    publishers: list[EntityConfig] = Field(default_factory=list)
    subscribers: list[EntityConfig] = Field(default_factory=list)

    # Agent-level defaults
    event_frequency: float | None = Field(default=None, ge=0)
    sync_frequency: float | None = Field(default=None, ge=0)
    consumer_threads: int = Field(default=1, ge=1)

    # Scheduling
    isolated_scheduling: bool = True
    startup_delay_seconds: float = Field(default=DEFAULT_STARTUP_DELAY_SECONDS, ge=0)

    # Mapping
    mapping_profile: str = DEFAULT_MAPPING_PROFILE
    mappings: dict[str, dict[str, dict[str, list[dict[str, Any]]]]] = Field(
        default_factory=dict,
        description="profile -> object type -> inbound/outbound -> field rules",
    )

    transport: str = "memory"

    # Directories
    work_dir: str | None = None
    log_dir: str | None = None
    test_data_dir: str | None = None

    debug_level: DebugLevel = DebugLevel.NONE

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    tracing: TracingConfig = Field(default_factory=TracingConfig)

    @field_validator("debug_level", mode="before")
    @classmethod
    def validate_debug_level(cls, v: Any) -> DebugLevel:
        """Parse debug levels written with or without the DBG_ prefix."""
        try:
            return DebugLevel.parse(v)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e

    @staticmethod
    def _find(entities: list[EntityConfig], entity_id: str) -> EntityConfig | None:
        for entity in entities:
            if entity.entity_id == entity_id:
                return entity
        return None

    def _publisher(self, publisher_id: str) -> EntityConfig | None:
        return self._find(self.publishers, publisher_id)

    def _subscriber(self, subscriber_id: str) -> EntityConfig | None:
        return self._find(self.subscribers, subscriber_id)

    def event_frequency_for(self, publisher_id: str) -> float:
        """Effective broadcast period: entity value, else agent value, else fallback."""
        entity = self._publisher(publisher_id)
        if entity is not None and entity.event_frequency is not None:
            return entity.event_frequency
        if self.event_frequency is not None:
            return self.event_frequency
        return FALLBACK_FREQUENCY

    def sync_frequency_for(self, subscriber_id: str) -> float:
        """Effective sync period: entity value, else agent value, else fallback."""
        entity = self._subscriber(subscriber_id)
        if entity is not None and entity.sync_frequency is not None:
            return entity.sync_frequency
        if self.sync_frequency is not None:
            return self.sync_frequency
        return FALLBACK_FREQUENCY

    def consumer_threads_for(self, subscriber_id: str) -> int:
        entity = self._subscriber(subscriber_id)
        if entity is not None and entity.consumer_threads is not None:
            return entity.consumer_threads
        return self.consumer_threads

    def queue_capacity_for(self, subscriber_id: str) -> int:
        """Queue capacity; follows the consumer thread count unless set explicitly."""
        entity = self._subscriber(subscriber_id)
        if entity is not None and entity.queue_capacity is not None:
            return entity.queue_capacity
        return self.consumer_threads_for(subscriber_id)

    def effective_log_level(self) -> str:
        """Explicit logging level, else the one implied by debug_level."""
        if self.logging.level:
            return self.logging.level
        return logging.getLevelName(self.debug_level.log_level)

    def log_file_path(self) -> str | None:
        if not self.logging.log_file:
            return None
        if self.log_dir:
            return str(Path(self.log_dir) / self.logging.log_file)
        return self.logging.log_file


def get_config_file_path(agent_id: str, file_name: str | None = None) -> Path:
    """Resolve the configuration file for an agent.

    ``<file_name or agent_id>.yaml`` inside ``ZONEBUS_CONFIG_DIR`` (or the
    working directory). A file name that already has a suffix is used as-is.
    """
    name = file_name or agent_id
    path = Path(name)
    if not path.suffix:
        path = path.with_suffix(".yaml")
    if path.is_absolute():
        return path

    config_dir = os.getenv("ZONEBUS_CONFIG_DIR")
    return Path(config_dir) / path if config_dir else path


def load_config_from_file(config_path: Path) -> AgentConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If configuration is invalid or file cannot be read
    """
    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping, got {type(config_data).__name__}: "
                f"{config_path}"
            )

        return AgentConfig(**config_data)

    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def _env_number(name: str, cast: type) -> Any:
    value = os.getenv(name)
    if value is None:
        return None
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {name}: {value}") from e


def load_config_from_env() -> dict[str, Any]:
    """Collect configuration overrides from environment variables.

    Environment variables are mapped as follows:
    - ZONEBUS_AGENT_ID: Agent identifier
    - ZONEBUS_EVENT_FREQUENCY: Agent-level broadcast period in seconds
    - ZONEBUS_SYNC_FREQUENCY: Agent-level sync period in seconds
    - ZONEBUS_CONSUMER_THREADS: Default consumer pool size
    - ZONEBUS_ISOLATED_SCHEDULING: One timer per entity (true/false)
    - ZONEBUS_STARTUP_DELAY: Seconds between consecutive entity start times
    - ZONEBUS_MAPPING_PROFILE: Mapping profile name
    - ZONEBUS_DEBUG_LEVEL: Debug level (NONE ... ALL)
    - ZONEBUS_LOG_LEVEL / ZONEBUS_LOG_FORMAT: Logging overrides
    - ZONEBUS_METRICS_PORT: Metrics server port

    Returns:
        Partial configuration data, only containing variables that are set
    """
    config_data: dict[str, Any] = {}

    if env_val := os.getenv("ZONEBUS_AGENT_ID"):
        config_data["agent_id"] = env_val
    if (val := _env_number("ZONEBUS_EVENT_FREQUENCY", float)) is not None:
        config_data["event_frequency"] = val
    if (val := _env_number("ZONEBUS_SYNC_FREQUENCY", float)) is not None:
        config_data["sync_frequency"] = val
    if (val := _env_number("ZONEBUS_CONSUMER_THREADS", int)) is not None:
        config_data["consumer_threads"] = val
    if env_val := os.getenv("ZONEBUS_ISOLATED_SCHEDULING"):
        config_data["isolated_scheduling"] = env_val.lower() in ("true", "1", "yes", "on")
    if (val := _env_number("ZONEBUS_STARTUP_DELAY", float)) is not None:
        config_data["startup_delay_seconds"] = val
    if env_val := os.getenv("ZONEBUS_MAPPING_PROFILE"):
        config_data["mapping_profile"] = env_val
    if env_val := os.getenv("ZONEBUS_DEBUG_LEVEL"):
        config_data["debug_level"] = DebugLevel.parse(env_val)

    logging_config = {}
    if env_val := os.getenv("ZONEBUS_LOG_LEVEL"):
        logging_config["level"] = env_val.upper()
    if env_val := os.getenv("ZONEBUS_LOG_FORMAT"):
        logging_config["format"] = env_val.lower()
    if logging_config:
        config_data["logging"] = logging_config

    if (val := _env_number("ZONEBUS_METRICS_PORT", int)) is not None:
        config_data["metrics"] = {"enabled": True, "port": val}

    return config_data


def load_config(config_path: Path | None = None, agent_id: str | None = None) -> AgentConfig:
    """Load configuration from file and environment variables.

    Configuration is loaded in the following order (later sources override earlier):
    1. Default values
    2. Configuration file (if provided)
    3. Environment variables
    4. Explicit agent_id argument

    Args:
        config_path: Optional path to configuration file
        agent_id: Agent identifier given on the command line

    Returns:
        Merged configuration

    Raises:
        ConfigurationError: If a source is invalid
    """
    config_data: dict[str, Any] = {}

    if config_path is not None:
        file_config = load_config_from_file(config_path)
        config_data.update(file_config.model_dump(exclude_unset=True))

    env_data = load_config_from_env()
    for key, value in env_data.items():
        if isinstance(value, dict) and isinstance(config_data.get(key), dict):
            config_data[key] = {**config_data[key], **value}
        else:
            config_data[key] = value

    if agent_id:
        config_data["agent_id"] = agent_id

    try:
        return AgentConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def validate_config(config: AgentConfig) -> None:
    """Validate configuration for consistency and correctness.

    Args:
        config: Configuration to validate

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if not config.agent_id.strip():
        raise ConfigurationError("agent_id must not be empty")

    zone_ids = [zone.zone_id.lower() for zone in config.zones]
    if len(zone_ids) != len(set(zone_ids)):
        raise ConfigurationError("zone ids must be unique")

    for kind, entities in (
        ("publisher", config.publishers),
        ("subscriber", config.subscribers),
    ):
        ids = [entity.entity_id for entity in entities]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate {kind} ids: {', '.join(duplicates)}"
            )

    if config.metrics.port <= 0 or config.metrics.port > 65535:
        raise ConfigurationError("metrics.port must be between 1 and 65535")

    for profile, object_types in config.mappings.items():
        for object_type, directions in object_types.items():
            unknown = set(directions) - {"inbound", "outbound"}
            if unknown:
                raise ConfigurationError(
                    f"Mapping {profile}/{object_type} has unknown direction(s): "
                    f"{', '.join(sorted(unknown))}"
                )
