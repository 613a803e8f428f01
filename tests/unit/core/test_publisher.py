"""Unit tests for the publisher runtime."""

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from zonebus.config import AgentConfig, EntityConfig
from zonebus.core.context import AgentContext
from zonebus.core.publisher import BasePublisher
from zonebus.core.streams import RecordStream
from zonebus.mapping import ProfileMappingResolver
from zonebus.schemas.messages import BusinessEvent, Query, Zone
from zonebus.schemas.types import EventAction
from zonebus.transport.memory import CollectingChannel, InMemoryTransport
from zonebus.utils.errors import ConfigurationError, RecordError

ZONES = [Zone(zone_id="a"), Zone(zone_id="b")]


class TrackingStream(RecordStream):
    def __init__(self, records: list[Any]):
        super().__init__()
        self.records = list(records)
        self.close_calls = 0

    async def read(self) -> Any:
        if not self.records:
            raise StopAsyncIteration
        record = self.records.pop(0)
        if isinstance(record, Exception):
            raise record
        return record

    async def close(self) -> None:
        self.close_calls += 1


class StudentPublisher(BasePublisher):
    object_type = "StudentPersonal"

    def __init__(self, entity_id: str | None = None):
        super().__init__(entity_id)
        self.source: Any = []
        self.responses: Any = []
        self.mappings: list[Any] = []
        self.finalise_calls = 0

    async def get_events(self, mapping):
        self.mappings.append(mapping)
        return self.source

    async def get_requested_records(self, query, zone, mapping_info):
        self.mappings.append(mapping_info)
        if isinstance(self.responses, Exception):
            raise self.responses
        return self.responses

    async def finalise(self) -> None:
        self.finalise_calls += 1


class FlakyTransport(InMemoryTransport):
    """Records every send; raises for zones listed in ``down``."""

    def __init__(self, down: set[str] | None = None):
        super().__init__()
        self.down = down or set()
        self.sends: list[tuple[str, Any]] = []

    async def report_event(self, zone, event):
        if zone.zone_id in self.down:
            raise ConnectionError("zone unreachable")
        self.sends.append((zone.zone_id, event.payload))
        await super().report_event(zone, event)


async def make_publisher(
    config: AgentConfig | None = None,
    transport: InMemoryTransport | None = None,
    resolver=None,
) -> StudentPublisher:
    config = config or AgentConfig(agent_id="test-agent", zones=ZONES)
    transport = transport or FlakyTransport()
    for zone in config.zones:
        await transport.connect(zone)

    publisher = StudentPublisher()
    publisher.bind_context(AgentContext.from_config(config, transport, resolver))
    return publisher


class TestPublisherContext:
    def test_object_type_required(self) -> None:
        class Untyped(BasePublisher):
            async def get_events(self, mapping):
                return None

            async def get_requested_records(self, query, zone, mapping_info):
                return None

            async def finalise(self) -> None:
                pass

        with pytest.raises(ConfigurationError):
            Untyped()

    def test_entity_id_defaults_to_class_name(self) -> None:
        assert StudentPublisher().entity_id == "StudentPublisher"
        assert StudentPublisher("custom").entity_id == "custom"

    def test_context_before_binding(self) -> None:
        with pytest.raises(ConfigurationError, match="no agent context"):
            _ = StudentPublisher().context

    def test_rebinding(self) -> None:
        config = AgentConfig(zones=ZONES)
        context = AgentContext.from_config(config, InMemoryTransport())
        publisher = StudentPublisher()

        publisher.bind_context(context)
        publisher.bind_context(context)
        assert publisher.context is context

        other = AgentContext.from_config(config, InMemoryTransport())
        with pytest.raises(ConfigurationError, match="already bound"):
            publisher.bind_context(other)

    def test_events_enabled(self) -> None:
        enabled = StudentPublisher()
        enabled.bind_context(
            AgentContext.from_config(AgentConfig(event_frequency=5), InMemoryTransport())
        )
        disabled = StudentPublisher()
        disabled.bind_context(
            AgentContext.from_config(
                AgentConfig(
                    publishers=[
                        EntityConfig(implementation="StudentPublisher", event_frequency=0)
                    ]
                ),
                InMemoryTransport(),
            )
        )

        assert enabled.events_enabled
        assert enabled.event_frequency == 5
        assert not disabled.events_enabled


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_fans_out_each_event_to_zones_in_order(self) -> None:
        transport = FlakyTransport()
        publisher = await make_publisher(transport=transport)
        publisher.source = [
            BusinessEvent(object_type="StudentPersonal", payload=1, action=EventAction.CREATE),
            BusinessEvent(object_type="StudentPersonal", payload=2),
        ]

        result = await publisher.broadcast_events()

        assert transport.sends == [("a", 1), ("b", 1), ("a", 2), ("b", 2)]
        assert [e.payload for e in transport.reported["a"]] == [1, 2]
        assert transport.reported["a"] == transport.reported["b"]
        assert transport.reported["a"][0].action is EventAction.CREATE
        assert result.sent == 2
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_raw_records_become_change_events(self) -> None:
        transport = FlakyTransport()
        publisher = await make_publisher(transport=transport)
        publisher.source = [{"id": 7}]

        await publisher.broadcast_events()

        event = transport.reported["a"][0]
        assert event.object_type == "StudentPersonal"
        assert event.action is EventAction.CHANGE
        assert event.payload == {"id": 7}

    @pytest.mark.asyncio
    async def test_zone_failure_does_not_stop_broadcast(self) -> None:
        transport = FlakyTransport(down={"a"})
        publisher = await make_publisher(transport=transport)
        publisher.source = [1, 2, 3]

        with patch("zonebus.core.publisher.record_delivery_failure") as mock_failure:
            result = await publisher.broadcast_events()

        assert transport.sends == [("b", 1), ("b", 2), ("b", 3)]
        assert result.sent == 3
        assert result.delivery_failures == 3
        mock_failure.assert_called_with("StudentPublisher", "a")

    @pytest.mark.asyncio
    async def test_stream_released_once_after_exhaustion(self) -> None:
        publisher = await make_publisher()
        stream = TrackingStream([1, 2])
        publisher.source = stream

        await publisher.broadcast_events()

        assert stream.close_calls == 1
        assert stream.released

    @pytest.mark.asyncio
    async def test_record_error_is_skipped(self) -> None:
        transport = FlakyTransport()
        publisher = await make_publisher(transport=transport)
        stream = TrackingStream([1, RecordError("StudentPublisher", "bad row"), 3])
        publisher.source = stream

        result = await publisher.broadcast_events()

        assert [p for z, p in transport.sends if z == "a"] == [1, 3]
        assert result.sent == 2
        assert result.failed == 1
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_stream_error_stops_and_releases(self) -> None:
        transport = FlakyTransport()
        publisher = await make_publisher(transport=transport)
        stream = TrackingStream([1, OSError("cursor lost"), 3])
        publisher.source = stream

        result = await publisher.broadcast_events()

        assert result.sent == 1
        assert result.failed == 1
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_none_record_stops_broadcast(self) -> None:
        transport = FlakyTransport()
        publisher = await make_publisher(transport=transport)
        stream = TrackingStream([1, None, 3])
        publisher.source = stream

        result = await publisher.broadcast_events()

        assert result.sent == 1
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_get_events_failure_is_logged(self) -> None:
        publisher = await make_publisher()
        publisher.get_events = AsyncMock(side_effect=RuntimeError("db down"))  # type: ignore[method-assign]

        result = await publisher.broadcast_events()

        assert result.sent == 0

    @pytest.mark.asyncio
    async def test_none_source(self) -> None:
        publisher = await make_publisher()
        publisher.source = None

        result = await publisher.broadcast_events()

        assert result.sent == 0

    @pytest.mark.asyncio
    async def test_outbound_mapping_resolved_once(self) -> None:
        config = AgentConfig(
            zones=ZONES,
            mappings={
                "Default": {
                    "StudentPersonal": {
                        "outbound": [{"source": "fn", "target": "FirstName"}]
                    }
                }
            },
        )
        publisher = await make_publisher(
            config, resolver=ProfileMappingResolver.from_config(config)
        )
        publisher.source = [1, 2, 3]

        await publisher.broadcast_events()

        assert len(publisher.mappings) == 1
        assert publisher.mappings[0].field_rules[0].target == "FirstName"

    @pytest.mark.asyncio
    async def test_run_once_skips_when_disabled(self) -> None:
        config = AgentConfig(
            zones=ZONES,
            publishers=[EntityConfig(implementation="StudentPublisher", event_frequency=0)],
        )
        publisher = await make_publisher(config)

        with patch.object(publisher, "broadcast_events", AsyncMock()) as mock_broadcast:
            await publisher.run_once()

        mock_broadcast.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_once_broadcasts_when_enabled(self) -> None:
        publisher = await make_publisher(AgentConfig(zones=ZONES, event_frequency=5))

        with patch.object(publisher, "broadcast_events", AsyncMock()) as mock_broadcast:
            await publisher.run_once()

        mock_broadcast.assert_awaited_once()


class FailingChannel(CollectingChannel):
    async def write(self, record: Any) -> None:
        if record == "unwritable":
            raise BrokenPipeError("peer went away")
        await super().write(record)


class TestOnRequest:
    @pytest.mark.asyncio
    async def test_writes_each_record(self) -> None:
        publisher = await make_publisher()
        stream = TrackingStream([{"id": 1}, {"id": 2}])
        publisher.responses = stream
        channel = CollectingChannel()

        result = await publisher.on_request(
            Query(object_type="StudentPersonal"), ZONES[0], channel, {"source_id": "peer"}
        )

        assert channel.records == [{"id": 1}, {"id": 2}]
        assert result.sent == 2
        assert stream.close_calls == 1
        assert publisher.mappings[0].message_info == {"source_id": "peer"}

    @pytest.mark.asyncio
    async def test_write_failure_does_not_abort_response(self) -> None:
        publisher = await make_publisher()
        publisher.responses = ["a", "unwritable", "b"]
        channel = FailingChannel()

        result = await publisher.on_request(
            Query(object_type="StudentPersonal"), ZONES[0], channel
        )

        assert channel.records == ["a", "b"]
        assert result.sent == 2
        assert result.write_failures == 1

    @pytest.mark.asyncio
    async def test_record_failure_does_not_abort_response(self) -> None:
        publisher = await make_publisher()
        stream = TrackingStream(["a", RecordError("StudentPublisher", "bad"), "b"])
        publisher.responses = stream
        channel = CollectingChannel()

        result = await publisher.on_request(
            Query(object_type="StudentPersonal"), ZONES[0], channel
        )

        assert channel.records == ["a", "b"]
        assert result.failed == 1
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_source_failure_propagates(self) -> None:
        publisher = await make_publisher()
        publisher.responses = PermissionError("no access")

        with pytest.raises(PermissionError):
            await publisher.on_request(
                Query(object_type="StudentPersonal"), ZONES[0], CollectingChannel()
            )

    @pytest.mark.asyncio
    async def test_threadsafe_variant(self) -> None:
        publisher = await make_publisher()
        publisher.responses = [1, 2, 3]
        channel = CollectingChannel()

        result = await asyncio.to_thread(
            publisher.on_request_threadsafe,
            Query(object_type="StudentPersonal"),
            ZONES[1],
            channel,
        )

        assert result.sent == 3
        assert channel.records == [1, 2, 3]

    def test_threadsafe_requires_running_agent(self) -> None:
        publisher = StudentPublisher()
        publisher.bind_context(AgentContext.from_config(AgentConfig(), InMemoryTransport()))

        with pytest.raises(ConfigurationError):
            publisher.on_request_threadsafe(
                Query(object_type="StudentPersonal"), ZONES[0], CollectingChannel()
            )


class TestShutdownAndTestData:
    @pytest.mark.asyncio
    async def test_finalise_runs_once(self) -> None:
        publisher = await make_publisher()

        await publisher.shutdown_publisher()
        await publisher.shutdown_publisher()

        assert publisher.finalise_calls == 1

    @pytest.mark.asyncio
    async def test_load_yaml_records(self, tmp_path) -> None:
        (tmp_path / "StudentPersonal.yaml").write_text("- id: 1\n- id: 2\n")
        publisher = await make_publisher(
            AgentConfig(zones=ZONES, test_data_dir=str(tmp_path))
        )

        assert publisher.load_records_from_file() == [{"id": 1}, {"id": 2}]

    @pytest.mark.asyncio
    async def test_load_single_json_record(self, tmp_path) -> None:
        (tmp_path / "StudentPersonal.json").write_text(json.dumps({"id": 9}))
        publisher = await make_publisher(
            AgentConfig(zones=ZONES, test_data_dir=str(tmp_path))
        )

        assert publisher.load_records_from_file() == [{"id": 9}]

    @pytest.mark.asyncio
    async def test_missing_test_data(self, tmp_path) -> None:
        publisher = await make_publisher(
            AgentConfig(zones=ZONES, test_data_dir=str(tmp_path))
        )
        assert publisher.load_records_from_file() == []

    @pytest.mark.asyncio
    async def test_events_from_file(self, tmp_path) -> None:
        (tmp_path / "StudentPersonal.yml").write_text(
            "- id: 1\n- action: delete\n  payload:\n    id: 2\n"
        )
        publisher = await make_publisher(
            AgentConfig(zones=ZONES, test_data_dir=str(tmp_path))
        )

        events = publisher.events_from_file()

        assert [e.action for e in events] == [EventAction.CHANGE, EventAction.DELETE]
        assert events[1].payload == {"id": 2}
