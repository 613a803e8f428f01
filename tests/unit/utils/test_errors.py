"""Unit tests for runtime error types."""

from zonebus.utils.errors import (
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


class TestZoneBusError:
    """Test base ZoneBusError class."""

    def test_initialization(self) -> None:
        """Test error initialization with message and recovery action."""
        error = ZoneBusError("Test error", RecoveryAction.SKIP)
        assert str(error) == "Test error"
        assert error.recovery_action == RecoveryAction.SKIP

    def test_default_recovery_action(self) -> None:
        """Test default recovery action is ABORT."""
        error = ZoneBusError("Test error")
        assert error.recovery_action == RecoveryAction.ABORT


class TestConfigurationError:
    def test_aborts(self) -> None:
        error = ConfigurationError("missing agent context")
        assert str(error) == "missing agent context"
        assert error.recovery_action == RecoveryAction.ABORT
        assert isinstance(error, ZoneBusError)

    def test_unknown_entity_error_lists_keys(self) -> None:
        """Test unknown entity error names both the missing and the known keys."""
        error = UnknownEntityError("publisher", ["Studnet", "Shcool"], ["Student"])

        assert isinstance(error, ConfigurationError)
        assert error.kind == "publisher"
        assert error.keys == ["Studnet", "Shcool"]
        assert error.available == ["Student"]
        assert "Studnet, Shcool" in str(error)
        assert "Registered: Student" in str(error)

    def test_unknown_entity_error_without_registrations(self) -> None:
        error = UnknownEntityError("transport", ["amqp"], [])
        assert "Registered: <none>" in str(error)


class TestZoneConnectionError:
    def test_initialization(self) -> None:
        error = ZoneConnectionError("district-north", "connection refused")

        assert error.zone_id == "district-north"
        assert error.reason == "connection refused"
        assert error.recovery_action == RecoveryAction.ABORT_STARTUP
        assert str(error) == "Failed to connect to zone 'district-north': connection refused"


class TestMappingError:
    def test_continues_unmapped(self) -> None:
        error = MappingError("StudentPersonal", "inbound", "bad rule")

        assert error.object_type == "StudentPersonal"
        assert error.direction == "inbound"
        assert error.recovery_action == RecoveryAction.CONTINUE_UNMAPPED
        assert "inbound mapping for StudentPersonal" in str(error)


class TestProcessingErrors:
    def test_processing_error_skips(self) -> None:
        error = ProcessingError("StudentSubscriber", "handler failed", {"id": 5})

        assert error.entity_id == "StudentSubscriber"
        assert error.payload == {"id": 5}
        assert error.recovery_action == RecoveryAction.SKIP
        assert str(error) == "Processing failed for StudentSubscriber: handler failed"

    def test_record_error_is_processing_error(self) -> None:
        error = RecordError("StudentPublisher", "unparseable row")

        assert isinstance(error, ProcessingError)
        assert error.payload is None
        assert error.recovery_action == RecoveryAction.SKIP

    def test_delivery_error(self) -> None:
        error = DeliveryError("StudentPublisher", "zone-b", "timeout")

        assert error.entity_id == "StudentPublisher"
        assert error.zone_id == "zone-b"
        assert error.recovery_action == RecoveryAction.SKIP
        assert str(error) == "StudentPublisher failed to deliver to zone 'zone-b': timeout"
