"""Publisher runtime: scheduled event broadcast and query responses."""

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from pathlib import Path
from typing import Any, ClassVar

import yaml
from pydantic import BaseModel, Field

from zonebus.config.config import DISABLED_FREQUENCY
from zonebus.core.context import AgentContext
from zonebus.core.streams import RecordStream, as_record_stream
from zonebus.mapping.resolver import select_mapping
from zonebus.schemas.messages import (
    BusinessEvent,
    MappingContext,
    MappingInfo,
    PublishingOptions,
    Query,
    Zone,
)
from zonebus.schemas.types import EventAction, MappingDirection
from zonebus.transport.base import ResponseChannel
from zonebus.utils.errors import ConfigurationError, DeliveryError, RecordError
from zonebus.utils.telemetry import (
    async_performance_timer,
    describe_payload,
    get_logger,
    record_delivery_failure,
    record_event_broadcast,
    record_query_response,
)
from zonebus.utils.threadsafe import run_from_thread

Records = RecordStream | Iterable[Any] | AsyncIterable[Any] | None

TEST_DATA_SUFFIXES = (".yaml", ".yml", ".json")


class BroadcastResult(BaseModel):
    """Totals of one broadcast run."""

    sent: int = Field(default=0, description="Events read and fanned out to all zones")
    failed: int = Field(default=0, description="Events the stream failed to produce")
    delivery_failures: int = Field(default=0, description="Failed (event, zone) sends")


class ResponseResult(BaseModel):
    """Totals of one query response."""

    sent: int = Field(default=0, description="Records written to the response channel")
    failed: int = Field(default=0, description="Records the stream failed to produce")
    write_failures: int = Field(default=0, description="Records the channel rejected")


class BasePublisher(ABC):
    """Base class for publishers of one object type.

    Subclasses provide the data: ``get_events`` for scheduled broadcasts,
    ``get_requested_records`` for peer queries, and ``finalise`` to release
    their own resources at agent stop. Both data methods may return a
    RecordStream, any (async) iterable, or None for "nothing to send".
    """

    object_type: ClassVar[str] = ""

    def __init__(
        self,
        entity_id: str | None = None,
        options: PublishingOptions | None = None,
    ):
        if not self.object_type:
            raise ConfigurationError(f"{type(self).__name__} must define object_type")

        self.entity_id = entity_id or type(self).__name__
        self.options = options or PublishingOptions()

        self._context: AgentContext | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._finalised = False
        self._logger = get_logger("zonebus.publisher", entity_id=self.entity_id)

    # Context

    @property
    def context(self) -> AgentContext:
        if self._context is None:
            raise ConfigurationError(f"Publisher {self.entity_id} has no agent context")
        return self._context

    @property
    def has_context(self) -> bool:
        return self._context is not None

    def bind_context(self, context: AgentContext) -> None:
        """Attach the agent context. Binding the same context again is a no-op.

        Raises:
            ConfigurationError: If a different context is already bound
        """
        if self._context is context:
            return
        if self._context is not None:
            raise ConfigurationError(
                f"Publisher {self.entity_id} is already bound to agent {self._context.agent_id}"
            )

        self._context = context
        self._logger = self._logger.bind(agent_id=context.agent_id)
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def zones(self) -> tuple[Zone, ...]:
        return self.context.zones

    @property
    def event_frequency(self) -> float:
        return self.context.settings.event_frequency_for(self.entity_id)

    @property
    def events_enabled(self) -> bool:
        return self.event_frequency != DISABLED_FREQUENCY

    # Data source

    @abstractmethod
    async def get_events(self, mapping: MappingContext | None) -> Records:
        """Return the events to broadcast in this run."""
        ...

    @abstractmethod
    async def get_requested_records(
        self, query: Query, zone: Zone, mapping_info: MappingInfo
    ) -> Records:
        """Return the records answering a peer's query."""
        ...

    @abstractmethod
    async def finalise(self) -> None:
        """Release publisher resources. Called once at agent stop."""
        ...

    # Scheduled work

    async def run_once(self) -> None:
        """One scheduler tick: broadcast if event sending is enabled."""
        send_events = self.events_enabled
        self._logger.debug("Publisher woken up", event_sending_required=send_events)
        if send_events:
            await self.broadcast_events()

    def _outbound_mapping(self, message_info: dict[str, Any] | None = None) -> MappingContext | None:
        return select_mapping(
            self.context.mapping_resolver,
            self.object_type,
            MappingDirection.OUTBOUND,
            self._logger,
            message_info=message_info,
            detailed=self.context.settings.debug_level.is_detailed,
        )

    def make_event(self, payload: Any, action: EventAction = EventAction.CHANGE) -> BusinessEvent:
        return BusinessEvent(object_type=self.object_type, payload=payload, action=action)

    async def broadcast_events(self) -> BroadcastResult:
        """Read this run's events and send each one to every zone in order.

        A failed send to one zone is counted and does not stop the others;
        a record the stream cannot produce is counted and skipped. The
        stream is released exactly once, however the run ends.
        """
        result = BroadcastResult()

        async with async_performance_timer(
            "broadcast_events", entity_id=self.entity_id, logger=self._logger
        ):
            mapping = self._outbound_mapping()
            try:
                records = await self.get_events(mapping)
            except Exception as e:
                self._logger.error(
                    "Failed to retrieve events",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                records = ()

            if records is None:
                self._logger.info("No event stream returned")

            stream = as_record_stream(records)
            try:
                async for event in self._read(stream, result, record_event_broadcast):
                    if not isinstance(event, BusinessEvent):
                        event = self.make_event(event)

                    for zone in self.zones:
                        self._logger.debug("Broadcasting event", zone_id=zone.zone_id)
                        if not await self._send_event(event, zone):
                            result.delivery_failures += 1

                    result.sent += 1
                    record_event_broadcast(self.entity_id, "sent")
            finally:
                await stream.release()

        self._logger.info(
            "Broadcast complete",
            object_type=self.object_type,
            broadcasted=result.sent,
            failed=result.failed,
            delivery_failures=result.delivery_failures,
        )
        return result

    async def _read(
        self,
        stream: RecordStream,
        result: BroadcastResult | ResponseResult,
        record_failure: Callable[[str, str], None],
    ) -> AsyncIterator[Any]:
        """Yield records from stream, counting the ones it fails to produce.

        Stops at the end of the stream, at a None record, or at an error
        other than RecordError.
        """
        iterator = aiter(stream)
        while True:
            try:
                record = await anext(iterator)
            except StopAsyncIteration:
                return
            except RecordError as e:
                result.failed += 1
                record_failure(self.entity_id, "failed")
                self._logger.error(
                    "Skipping record",
                    error=str(e),
                    payload=describe_payload(e.payload),
                )
                continue
            except Exception as e:
                result.failed += 1
                record_failure(self.entity_id, "failed")
                self._logger.error(
                    "Failed to retrieve next record, stopping",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return

            if record is None:
                self._logger.error("Record stream returned None; no further records are sent")
                return

            yield record

    async def _send_event(self, event: BusinessEvent, zone: Zone) -> bool:
        try:
            await self.context.transport.report_event(zone, event)
        except Exception as e:
            error = DeliveryError(self.entity_id, zone.zone_id, str(e))
            record_delivery_failure(self.entity_id, zone.zone_id)
            self._logger.error(
                str(error),
                zone_id=zone.zone_id,
                action=event.action.value,
                payload=describe_payload(event.payload),
                error_type=type(e).__name__,
            )
            return False
        return True

    # Query responses

    async def on_request(
        self,
        query: Query,
        zone: Zone,
        channel: ResponseChannel,
        message_info: dict[str, Any] | None = None,
    ) -> ResponseResult:
        """Answer a peer query by writing each requested record to channel.

        Raises:
            Exception: Whatever ``get_requested_records`` raises, so the
                transport can report the failure to the requester
        """
        result = ResponseResult()

        async with async_performance_timer(
            "on_request", entity_id=self.entity_id, logger=self._logger
        ):
            mapping_info = MappingInfo(
                message_info=message_info,
                mapping=self._outbound_mapping(message_info),
            )
            records = await self.get_requested_records(query, zone, mapping_info)
            if records is None:
                self._logger.info("No response stream returned", zone_id=zone.zone_id)

            stream = as_record_stream(records)
            try:
                async for record in self._read(stream, result, record_query_response):
                    try:
                        await channel.write(record)
                    except Exception as e:
                        result.write_failures += 1
                        record_query_response(self.entity_id, "failed")
                        self._logger.error(
                            "Failed to send record in response",
                            zone_id=zone.zone_id,
                            payload=describe_payload(record),
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                        continue

                    result.sent += 1
                    record_query_response(self.entity_id, "sent")
            finally:
                await stream.release()

        self._logger.info(
            "Query response complete",
            object_type=self.object_type,
            zone_id=zone.zone_id,
            sent=result.sent,
            failed=result.failed,
            write_failures=result.write_failures,
        )
        return result

    def on_request_threadsafe(
        self,
        query: Query,
        zone: Zone,
        channel: ResponseChannel,
        message_info: dict[str, Any] | None = None,
    ) -> ResponseResult:
        """Blocking variant of on_request for transport-owned threads."""
        if self._loop is None:
            raise ConfigurationError(f"Publisher {self.entity_id} is not running")
        return run_from_thread(
            self._loop, self.on_request(query, zone, channel, message_info)
        )

    # Shutdown

    async def shutdown_publisher(self) -> None:
        """Run ``finalise`` once; later calls do nothing."""
        if self._finalised:
            return
        self._finalised = True
        await self.finalise()

    # Test data

    def _test_data_file(self) -> Path | None:
        test_dir = self.context.settings.test_data_dir
        base = Path(test_dir) if test_dir else Path()
        for suffix in TEST_DATA_SUFFIXES:
            candidate = base / f"{self.object_type}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def load_records_from_file(self) -> list[Any]:
        """Load records of this object type from the agent's test data directory.

        Reads ``<test_data_dir>/<object_type>`` with a .yaml, .yml or .json
        suffix. A file holding a single mapping yields one record.
        """
        path = self._test_data_file()
        if path is None:
            self._logger.error(
                "No test data file found",
                object_type=self.object_type,
                test_data_dir=self.context.settings.test_data_dir,
            )
            return []

        with open(path, encoding="utf-8") as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if data is None:
            records: list[Any] = []
        elif isinstance(data, list):
            records = data
        else:
            records = [data]

        self._logger.debug("Test data loaded", path=str(path), records=len(records))
        return records

    def events_from_file(self) -> list[BusinessEvent]:
        """Load test data as events.

        An entry with a ``payload`` key may carry its own ``action``; any
        other entry is the payload of a CHANGE event.
        """
        events = []
        for record in self.load_records_from_file():
            if isinstance(record, dict) and "payload" in record:
                action = EventAction(str(record.get("action", "change")).lower())
                events.append(self.make_event(record["payload"], action))
            else:
                events.append(self.make_event(record))
        return events
