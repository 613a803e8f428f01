"""Structured error types for the agent runtime.

Every error carries a suggested recovery action so callers can decide,
at the smallest possible scope, whether to skip one record, continue
without a mapping, or abort an agent start.
"""

from enum import Enum
from typing import Any


class RecoveryAction(Enum):
    """Recovery actions for error handling."""

    ABORT = "abort"
    SKIP = "skip"
    CONTINUE_UNMAPPED = "continue_unmapped"
    ABORT_STARTUP = "abort_startup"


class ZoneBusError(Exception):
    """Base exception for runtime errors."""

    def __init__(
        self, message: str, recovery_action: RecoveryAction = RecoveryAction.ABORT
    ):
        """Initialize runtime error.

        Args:
            message: Error message
            recovery_action: Suggested recovery action
        """
        super().__init__(message)
        self.recovery_action = recovery_action


class ConfigurationError(ZoneBusError):
    """Error raised when a required configuration value is missing or invalid.

    Fails the lifecycle step that needed the value, not the process.
    """

    def __init__(self, message: str):
        super().__init__(message, RecoveryAction.ABORT)


class UnknownEntityError(ConfigurationError):
    """Error raised when configured implementation keys are not registered."""

    def __init__(self, kind: str, keys: list[str], available: list[str]):
        """Initialize unknown entity error.

        Args:
            kind: Entity kind ("publisher", "subscriber" or "transport")
            keys: Unregistered implementation keys
            available: Keys that are registered for this kind
        """
        self.kind = kind
        self.keys = keys
        self.available = available

        message = (
            f"Unknown {kind} implementation(s): {', '.join(keys)}. "
            f"Registered: {', '.join(available) or '<none>'}"
        )
        super().__init__(message)


class ZoneConnectionError(ZoneBusError):
    """Error raised when an agent cannot connect to a zone.

    Any single zone failure aborts the whole agent start once every zone
    has been attempted.
    """

    def __init__(self, zone_id: str, reason: str):
        """Initialize zone connection error.

        Args:
            zone_id: Zone identifier
            reason: Human-readable failure reason
        """
        self.zone_id = zone_id
        self.reason = reason

        message = f"Failed to connect to zone '{zone_id}': {reason}"
        super().__init__(message, RecoveryAction.ABORT_STARTUP)


class MappingError(ZoneBusError):
    """Error raised when a mapping context cannot be resolved.

    Callers log it and carry on without a mapping.
    """

    def __init__(self, object_type: str, direction: str, reason: str):
        """Initialize mapping error.

        Args:
            object_type: Object type being mapped
            direction: Mapping direction ("inbound" or "outbound")
            reason: Human-readable failure reason
        """
        self.object_type = object_type
        self.direction = direction
        self.reason = reason

        message = f"Failed to resolve {direction} mapping for {object_type}: {reason}"
        super().__init__(message, RecoveryAction.CONTINUE_UNMAPPED)


class ProcessingError(ZoneBusError):
    """Error raised when a single event, response or message fails.

    Counted and logged with its payload; never aborts the batch or the
    worker that hit it.
    """

    def __init__(self, entity_id: str, reason: str, payload: Any = None):
        """Initialize processing error.

        Args:
            entity_id: Publisher or subscriber identifier
            reason: Human-readable failure reason
            payload: The record that failed (optional)
        """
        self.entity_id = entity_id
        self.reason = reason
        self.payload = payload

        message = f"Processing failed for {entity_id}: {reason}"
        super().__init__(message, RecoveryAction.SKIP)


class RecordError(ProcessingError):
    """Error raised by a record stream to skip one record and keep going."""


class DeliveryError(ZoneBusError):
    """Error raised when one outbound item cannot be sent to a zone."""

    def __init__(self, entity_id: str, zone_id: str, reason: str):
        """Initialize delivery error.

        Args:
            entity_id: Publisher identifier
            zone_id: Target zone identifier
            reason: Human-readable failure reason
        """
        self.entity_id = entity_id
        self.zone_id = zone_id
        self.reason = reason

        message = f"{entity_id} failed to deliver to zone '{zone_id}': {reason}"
        super().__init__(message, RecoveryAction.SKIP)
