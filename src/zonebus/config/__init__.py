"""Configuration management for zonebus.

This module provides configuration loading, validation, and the
frequency/pool-size lookups consumed by the agent runtime.
"""

from .config import (
    DEFAULT_MAPPING_PROFILE,
    DEFAULT_STARTUP_DELAY_SECONDS,
    DISABLED_FREQUENCY,
    FALLBACK_FREQUENCY,
    AgentConfig,
    DebugLevel,
    EntityConfig,
    LoggingConfig,
    MetricsConfig,
    TracingConfig,
    get_config_file_path,
    load_config,
    load_config_from_env,
    load_config_from_file,
    validate_config,
)

__all__ = [
    "DEFAULT_MAPPING_PROFILE",
    "DEFAULT_STARTUP_DELAY_SECONDS",
    "DISABLED_FREQUENCY",
    "FALLBACK_FREQUENCY",
    "AgentConfig",
    "DebugLevel",
    "EntityConfig",
    "LoggingConfig",
    "MetricsConfig",
    "TracingConfig",
    "get_config_file_path",
    "load_config",
    "load_config_from_env",
    "load_config_from_file",
    "validate_config",
]
