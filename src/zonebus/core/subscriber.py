"""Subscriber runtime: provisioning, sync queries and inbound buffering."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, ClassVar

from zonebus.config.config import DISABLED_FREQUENCY
from zonebus.core.consumer import ConsumerPool
from zonebus.core.context import AgentContext
from zonebus.core.queue import MessageQueue
from zonebus.mapping.resolver import select_mapping
from zonebus.schemas.messages import (
    BusinessEvent,
    InboundMessage,
    MappingInfo,
    Query,
    SubscriptionOptions,
    Zone,
    ZoneErrorReport,
)
from zonebus.schemas.types import EventAction, MappingDirection, StopToken
from zonebus.utils.errors import ConfigurationError
from zonebus.utils.telemetry import async_performance_timer, get_logger
from zonebus.utils.threadsafe import run_from_thread


class BaseSubscriber(ABC):
    """Base class for subscribers of one object type.

    Transport deliveries are filtered through ``accept_event`` /
    ``accept_query_result`` and pushed onto a bounded queue; a pool of
    consumer workers hands them to ``process_event`` and
    ``process_response``. Pushing waits while the queue is full, so a
    slow subscriber slows down whoever delivers to it.
    """

    object_type: ClassVar[str] = ""

    def __init__(
        self,
        entity_id: str | None = None,
        options: SubscriptionOptions | None = None,
    ):
        if not self.object_type:
            raise ConfigurationError(f"{type(self).__name__} must define object_type")

        self.entity_id = entity_id or type(self).__name__
        self.options = options or SubscriptionOptions()

        self.queue: MessageQueue | None = None
        self.pool: ConsumerPool | None = None

        self._context: AgentContext | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._finalised = False
        self._logger = get_logger("zonebus.subscriber", entity_id=self.entity_id)

    # Context

    @property
    def context(self) -> AgentContext:
        if self._context is None:
            raise ConfigurationError(f"Subscriber {self.entity_id} has no agent context")
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
                f"Subscriber {self.entity_id} is already bound to agent {self._context.agent_id}"
            )

        self._context = context
        self._logger = self._logger.bind(agent_id=context.agent_id)

    @property
    def zones(self) -> tuple[Zone, ...]:
        return self.context.zones

    @property
    def sync_frequency(self) -> float:
        return self.context.settings.sync_frequency_for(self.entity_id)

    @property
    def sync_enabled(self) -> bool:
        return self.sync_frequency != DISABLED_FREQUENCY

    @property
    def consumers_started(self) -> bool:
        return self.pool is not None and self.pool.running

    # Hooks

    @abstractmethod
    async def process_event(
        self, event: BusinessEvent, zone: Zone, mapping_info: MappingInfo, consumer_id: str
    ) -> None:
        """Handle one inbound event."""
        ...

    @abstractmethod
    async def process_response(
        self, payload: Any, zone: Zone, mapping_info: MappingInfo, consumer_id: str
    ) -> None:
        """Handle one record of a query result."""
        ...

    @abstractmethod
    async def finalise(self) -> None:
        """Release subscriber resources. Called once at agent stop."""
        ...

    def build_sync_query(self, query: Query, zone: Zone) -> Query:
        """Add conditions to the sync query sent to zone. Default: none."""
        return query

    def accept_event(
        self, event: BusinessEvent, zone: Zone, mapping_info: MappingInfo
    ) -> bool:
        """Decide whether an inbound event is queued. Default: accept all."""
        return True

    def accept_query_result(
        self, record: Any, zone: Zone, mapping_info: MappingInfo
    ) -> bool:
        """Decide whether a query result record is queued. Default: accept all."""
        return True

    def report_zone_error(self, error: ZoneErrorReport, zone: Zone) -> None:
        self._logger.error(
            "Error received from zone",
            zone_id=zone.zone_id,
            code=error.code,
            category=error.category,
            description=error.description,
            extended_description=error.extended_description,
        )

    # Zone registration and sync

    async def provision(self, zone: Zone) -> None:
        """Register interest in this object type with zone.

        Registers once as an event subscriber and as a query result
        receiver; must happen before the zone is connected.
        """
        await self.context.transport.assign_subscriber(
            zone, self, self.object_type, self.options
        )
        self._logger.debug("Subscriber provisioned", zone_id=zone.zone_id)

    async def sync(self, zone: Zone) -> None:
        """Request every object of this type from zone."""
        query = Query(object_type=self.object_type, requester_id=self.entity_id)
        query = self.build_sync_query(query, zone)
        await self.context.transport.query(zone, query)

    async def sync_all_zones(self) -> None:
        """Sync every zone in order. The first failure propagates."""
        async with async_performance_timer(
            "sync_all_zones", entity_id=self.entity_id, logger=self._logger
        ):
            for zone in self.zones:
                await self.sync(zone)

    async def run_once(self) -> None:
        """One scheduler tick: sync all zones if sync is enabled."""
        sync_required = self.sync_enabled
        self._logger.debug("Subscriber woken up", sync_required=sync_required)
        if not sync_required:
            return

        try:
            await self.sync_all_zones()
            self._logger.debug("Sync across all zones complete")
        except Exception as e:
            self._logger.error(
                "Failed to synchronise data",
                error=str(e),
                error_type=type(e).__name__,
            )

    # Consumers

    def start_consumers(self) -> None:
        """Create the queue and start the consumer pool.

        Must be called on the agent's event loop after the context is bound.

        Raises:
            ConfigurationError: If no agent context is bound
        """
        if self._context is None:
            raise ConfigurationError(
                f"The agent context is not set for subscriber {self.entity_id}"
            )

        settings = self._context.settings
        workers = settings.consumer_threads_for(self.entity_id)
        capacity = settings.queue_capacity_for(self.entity_id)

        self._loop = asyncio.get_running_loop()
        self.queue = MessageQueue(capacity, f"{self.object_type}Queue", self.entity_id)
        self.pool = ConsumerPool(self.queue, self, workers)
        self.pool.start()

    def _require_queue(self) -> tuple[MessageQueue, StopToken]:
        if self.queue is None or self.pool is None or not self.consumers_started:
            raise ConfigurationError(
                f"Consumers of subscriber {self.entity_id} are not running"
            )
        return self.queue, self.pool.stop_token

    # Inbound delivery

    def _inbound_mapping_info(self, message_info: dict[str, Any] | None) -> MappingInfo:
        mapping = select_mapping(
            self.context.mapping_resolver,
            self.object_type,
            MappingDirection.INBOUND,
            self._logger,
            message_info=message_info,
            detailed=self.context.settings.debug_level.is_detailed,
        )
        return MappingInfo(message_info=message_info, mapping=mapping)

    async def on_event(
        self,
        events: Iterable[BusinessEvent],
        zone: Zone,
        message_info: dict[str, Any] | None = None,
    ) -> int:
        """Queue the accepted events of one delivery.

        Events still undelivered when the consumers stop are dropped.

        Returns:
            Number of events queued
        """
        queue, stop_token = self._require_queue()
        mapping_info = self._inbound_mapping_info(message_info)

        queued = 0
        for event in events:
            self._logger.debug(
                "Event received", action=event.action.value, zone_id=zone.zone_id
            )
            if not self.accept_event(event, zone, mapping_info):
                continue
            message = InboundMessage.for_event(event.payload, zone, mapping_info, event.action)
            if not await queue.put(message, stop_token):
                break
            queued += 1
        return queued

    async def on_query_results(
        self,
        records: Iterable[Any],
        zone: Zone,
        message_info: dict[str, Any] | None = None,
        error: ZoneErrorReport | None = None,
    ) -> int:
        """Queue the accepted records of one query result delivery.

        A delivery carrying a zone error is reported and nothing is queued.

        Returns:
            Number of records queued
        """
        self._logger.debug("Query results received", zone_id=zone.zone_id)
        if error is not None:
            self.report_zone_error(error, zone)
            return 0

        queue, stop_token = self._require_queue()
        mapping_info = self._inbound_mapping_info(message_info)

        received = 0
        queued = 0
        for record in records:
            received += 1
            if not self.accept_query_result(record, zone, mapping_info):
                continue
            message = InboundMessage.for_query_result(record, zone, mapping_info)
            if not await queue.put(message, stop_token):
                break
            queued += 1

        self._logger.info(
            "Query results queued",
            object_type=self.object_type,
            zone_id=zone.zone_id,
            received=received,
            queued=queued,
        )
        return queued

    def _loop_or_raise(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise ConfigurationError(
                f"Consumers of subscriber {self.entity_id} have not been started"
            )
        return self._loop

    def on_event_threadsafe(
        self,
        events: Iterable[BusinessEvent],
        zone: Zone,
        message_info: dict[str, Any] | None = None,
    ) -> int:
        """Blocking variant of on_event for transport-owned threads.

        Returns only once every accepted event is in the queue or has been
        dropped because the consumers stopped.
        """
        return run_from_thread(
            self._loop_or_raise(), self.on_event(list(events), zone, message_info)
        )

    def on_query_results_threadsafe(
        self,
        records: Iterable[Any],
        zone: Zone,
        message_info: dict[str, Any] | None = None,
        error: ZoneErrorReport | None = None,
    ) -> int:
        """Blocking variant of on_query_results for transport-owned threads."""
        return run_from_thread(
            self._loop_or_raise(),
            self.on_query_results(list(records), zone, message_info, error),
        )

    # Shutdown

    async def shutdown_subscriber(self, timeout: float = 5.0) -> None:
        """Stop the consumer pool, then run ``finalise`` once."""
        if self._finalised:
            return
        self._finalised = True

        if self.pool is not None:
            await self.pool.shutdown(timeout=timeout, reason="subscriber shutdown")
        await self.finalise()

    def make_event(self, payload: Any, action: EventAction = EventAction.CHANGE) -> BusinessEvent:
        return BusinessEvent(object_type=self.object_type, payload=payload, action=action)
