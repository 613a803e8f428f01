"""Agent lifecycle: connect zones, wire entities, schedule, stop.

Startup is all-or-nothing. Every zone is attempted; if any of them fails
to connect, nothing is scheduled and the agent is stopped, which also
closes the transport and with it every zone that did connect.
"""

import asyncio
import signal
from collections.abc import Sequence

from zonebus.config.config import AgentConfig
from zonebus.core.context import AgentContext
from zonebus.core.publisher import BasePublisher
from zonebus.core.registry import EntityRegistry, default_registry
from zonebus.core.scheduler import TaskScheduler
from zonebus.core.subscriber import BaseSubscriber
from zonebus.mapping.resolver import MappingResolver, ProfileMappingResolver
from zonebus.schemas.messages import Zone
from zonebus.transport.base import Transport
from zonebus.utils.errors import ZoneConnectionError
from zonebus.utils.telemetry import (
    async_performance_timer,
    get_logger,
    record_zone_connection,
)


class AgentOrchestrator:
    """Owns one agent's context, entities and schedulers."""

    def __init__(
        self,
        config: AgentConfig,
        transport: Transport,
        mapping_resolver: MappingResolver | None = None,
        shutdown_timeout: float = 5.0,
    ):
        """Initialize the orchestrator.

        Args:
            config: Validated agent configuration
            transport: Transport used for every zone
            mapping_resolver: Mapping resolver (default: profiles from config.mappings)
            shutdown_timeout: Seconds consumers and ticks get to finish at stop
        """
        self.config = config
        self.transport = transport
        self.context = AgentContext.from_config(
            config,
            transport,
            mapping_resolver or ProfileMappingResolver.from_config(config),
        )
        self.shutdown_timeout = shutdown_timeout

        self.publishers: list[BasePublisher] = []
        self.subscribers: list[BaseSubscriber] = []
        self.connected_zones: list[Zone] = []
        self.failed_zones: list[str] = []

        self._initialized = False
        self._publisher_scheduler: TaskScheduler | None = None
        self._subscriber_scheduler: TaskScheduler | None = None
        self._stopped = asyncio.Event()
        self._stop_requested = False
        self._stop_task: asyncio.Task[None] | None = None
        self._logger = get_logger("zonebus.orchestrator", agent_id=config.agent_id)

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        registry: EntityRegistry = default_registry,
        mapping_resolver: MappingResolver | None = None,
    ) -> "AgentOrchestrator":
        """Build the transport and every configured entity from the registry.

        Raises:
            ConfigurationError: If any implementation key or the transport is unknown
        """
        publishers = registry.build_publishers(config)
        subscribers = registry.build_subscribers(config)
        orchestrator = cls(config, registry.create_transport(config), mapping_resolver)
        orchestrator.publishers = publishers
        orchestrator.subscribers = subscribers
        return orchestrator

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def start(
        self,
        publishers: Sequence[BasePublisher] | None = None,
        subscribers: Sequence[BaseSubscriber] | None = None,
    ) -> bool:
        """Connect every zone and, if all of them connected, start scheduling.

        Args:
            publishers: Publishers to run (default: the ones built by from_config)
            subscribers: Subscribers to run (default: the ones built by from_config)

        Returns:
            True if the agent is running, False if startup was aborted

        Raises:
            RuntimeError: If the agent is already running
        """
        if self._initialized:
            raise RuntimeError(f"Agent {self.config.agent_id} is already running")

        if publishers is not None:
            self.publishers = list(publishers)
        if subscribers is not None:
            self.subscribers = list(subscribers)

        self.connected_zones = []
        self.failed_zones = []
        self._stopped.clear()
        self._stop_requested = False

        self._logger.info(
            "Starting agent",
            zones=[zone.zone_id for zone in self.context.zones],
            publishers=[p.entity_id for p in self.publishers],
            subscribers=[s.entity_id for s in self.subscribers],
        )

        async with async_performance_timer(
            "agent_start", entity_id=self.config.agent_id, logger=self._logger
        ):
            for entity in (*self.publishers, *self.subscribers):
                entity.bind_context(self.context)

            for zone in self.context.zones:
                await self._connect_zone(zone)

            self._initialized = True

            if self.failed_zones:
                self._logger.error(
                    "Agent start aborted, not all zones connected",
                    failed_zones=self.failed_zones,
                    connected_zones=[zone.zone_id for zone in self.connected_zones],
                )
                await self.stop()
                return False

            try:
                self._start_publishers()
                self._start_subscribers()
            except Exception as e:
                self._logger.error(
                    "Failed to start entities",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self.stop()
                raise

        self._logger.info("Agent started")
        return True

    async def _connect_zone(self, zone: Zone) -> None:
        try:
            for publisher in self.publishers:
                await self.transport.assign_publisher(
                    zone, publisher, publisher.object_type, publisher.options
                )
            for subscriber in self.subscribers:
                await subscriber.provision(zone)

            await self.transport.connect(zone)
        except Exception as e:
            error = (
                e if isinstance(e, ZoneConnectionError)
                else ZoneConnectionError(zone.zone_id, str(e))
            )
            self.failed_zones.append(zone.zone_id)
            record_zone_connection(zone.zone_id, "failed")
            self._logger.error(
                str(error),
                zone_id=zone.zone_id,
                error_type=type(e).__name__,
            )
            return

        self.connected_zones.append(zone)
        record_zone_connection(zone.zone_id, "connected")
        self._logger.info("Connected to zone", zone_id=zone.zone_id)

    def _start_publishers(self) -> None:
        self._publisher_scheduler = TaskScheduler(
            "publishers", isolated=self.config.isolated_scheduling
        )
        self._publisher_scheduler.schedule(
            self.publishers,
            self.config.event_frequency_for,
            self.config.startup_delay_seconds,
        )

    def _start_subscribers(self) -> None:
        for subscriber in self.subscribers:
            subscriber.start_consumers()

        self._subscriber_scheduler = TaskScheduler(
            "subscribers", isolated=self.config.isolated_scheduling
        )
        self._subscriber_scheduler.schedule(
            self.subscribers,
            self.config.sync_frequency_for,
            self.config.startup_delay_seconds,
        )

    async def stop(self) -> None:
        """Release every entity, stop scheduling and close the transport.

        Safe to call more than once; only the first call does anything.
        """
        if not self._initialized:
            self._logger.info("Agent already shutdown or was not running")
            return
        self._initialized = False

        self._logger.info("Stopping agent")

        for publisher in self.publishers:
            try:
                await publisher.shutdown_publisher()
            except Exception as e:
                self._logger.error(
                    "Publisher shutdown failed",
                    entity_id=publisher.entity_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if self._publisher_scheduler is not None:
            await self._publisher_scheduler.shutdown(self.shutdown_timeout)
            self._publisher_scheduler = None

        for subscriber in self.subscribers:
            try:
                await subscriber.shutdown_subscriber(self.shutdown_timeout)
            except Exception as e:
                self._logger.error(
                    "Subscriber shutdown failed",
                    entity_id=subscriber.entity_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if self._subscriber_scheduler is not None:
            await self._subscriber_scheduler.shutdown(self.shutdown_timeout)
            self._subscriber_scheduler = None

        try:
            await self.transport.close()
        except Exception as e:
            self._logger.error(
                "Failed to close transport", error=str(e), error_type=type(e).__name__
            )

        self._stopped.set()
        self._logger.info("Agent stopped")

    def request_stop(self) -> None:
        """Schedule stop() from a signal handler. Repeated requests are ignored."""
        if self._stop_requested:
            return
        self._stop_requested = True
        self._logger.info("Termination requested")
        self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    def install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop | None = None
    ) -> None:
        """Stop the agent on SIGINT and SIGTERM."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop)

    async def run_until_stopped(self) -> None:
        await self._stopped.wait()

    async def run(self) -> bool:
        """Start the agent and wait until it is stopped.

        Returns:
            False if startup was aborted, True after a normal stop
        """
        if not await self.start():
            return False
        await self.run_until_stopped()
        return True
