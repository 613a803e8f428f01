# Shared utilities and helpers

from .errors import (
    ConfigurationError,
    DeliveryError,
    MappingError,
    ProcessingError,
    RecordError,
    RecoveryAction,
    UnknownEntityError,
    ZoneBusError,
    ZoneConnectionError,
)
from .threadsafe import run_from_thread

__all__ = [
    "ConfigurationError",
    "DeliveryError",
    "MappingError",
    "ProcessingError",
    "RecordError",
    "RecoveryAction",
    "UnknownEntityError",
    "ZoneBusError",
    "ZoneConnectionError",
    "run_from_thread",
]
