"""Unit tests for the implementation registry."""

import pytest

from zonebus.config import AgentConfig, EntityConfig
from zonebus.core.publisher import BasePublisher
from zonebus.core.registry import EntityRegistry, default_registry
from zonebus.core.subscriber import BaseSubscriber
from zonebus.transport.memory import InMemoryTransport
from zonebus.utils.errors import ConfigurationError, UnknownEntityError


class SchoolPublisher(BasePublisher):
    object_type = "SchoolInfo"

    async def get_events(self, mapping):
        return None

    async def get_requested_records(self, query, zone, mapping_info):
        return None

    async def finalise(self) -> None:
        pass


class SchoolSubscriber(BaseSubscriber):
    object_type = "SchoolInfo"

    async def process_event(self, event, zone, mapping_info, consumer_id) -> None:
        pass

    async def process_response(self, payload, zone, mapping_info, consumer_id) -> None:
        pass

    async def finalise(self) -> None:
        pass


class TestEntityRegistry:
    def test_decorators_register_by_class_name(self) -> None:
        registry = EntityRegistry()
        registry.publisher()(SchoolPublisher)
        registry.subscriber("school-sub")(SchoolSubscriber)

        assert registry.publisher_keys == ["SchoolPublisher"]
        assert registry.subscriber_keys == ["school-sub"]

    def test_build_in_configuration_order(self) -> None:
        registry = EntityRegistry()
        registry.register_publisher("SchoolPublisher", SchoolPublisher)
        config = AgentConfig(
            publishers=[
                EntityConfig(implementation="SchoolPublisher", id="first"),
                EntityConfig(implementation="SchoolPublisher"),
            ]
        )

        publishers = registry.build_publishers(config)

        assert [p.entity_id for p in publishers] == ["first", "SchoolPublisher"]
        assert all(isinstance(p, SchoolPublisher) for p in publishers)

    def test_unknown_keys_are_all_reported(self) -> None:
        registry = EntityRegistry()
        registry.register_subscriber("SchoolSubscriber", SchoolSubscriber)
        config = AgentConfig(
            subscribers=[
                EntityConfig(implementation="SchoolSubscriber"),
                EntityConfig(implementation="StaffSubscriber"),
                EntityConfig(implementation="RoomSubscriber"),
            ]
        )

        with pytest.raises(UnknownEntityError) as exc_info:
            registry.build_subscribers(config)

        assert exc_info.value.kind == "subscriber"
        assert exc_info.value.keys == ["StaffSubscriber", "RoomSubscriber"]
        assert exc_info.value.available == ["SchoolSubscriber"]

    def test_unknown_key_is_a_configuration_error(self) -> None:
        config = AgentConfig(publishers=[EntityConfig(implementation="Missing")])

        with pytest.raises(ConfigurationError):
            EntityRegistry().build_publishers(config)

    def test_factory_returning_wrong_type(self) -> None:
        registry = EntityRegistry()
        registry.register_publisher("Wrong", SchoolSubscriber)
        config = AgentConfig(publishers=[EntityConfig(implementation="Wrong")])

        with pytest.raises(ConfigurationError, match="expected a BasePublisher"):
            registry.build_publishers(config)

    def test_duplicate_registration(self) -> None:
        registry = EntityRegistry()
        registry.register_publisher("SchoolPublisher", SchoolPublisher)
        registry.register_publisher("SchoolPublisher", SchoolPublisher)

        with pytest.raises(ValueError, match="already registered"):
            registry.register_publisher("SchoolPublisher", lambda entity_id: None)

    def test_empty_key(self) -> None:
        with pytest.raises(ValueError):
            EntityRegistry().register_transport("", lambda config: InMemoryTransport())

    def test_default_memory_transport(self) -> None:
        transport = default_registry.create_transport(AgentConfig(transport="memory"))
        assert isinstance(transport, InMemoryTransport)

    def test_unknown_transport(self) -> None:
        with pytest.raises(UnknownEntityError, match="Unknown transport"):
            EntityRegistry().create_transport(AgentConfig(transport="amqp"))
