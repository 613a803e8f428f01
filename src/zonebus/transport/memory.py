"""In-process loopback transport.

Zones are plain names; events reported to a zone are recorded and handed
to that zone's subscribers, and queries are answered by the zone's
publishers (plus any seeded records) and returned to the requester.
"""

from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from zonebus.schemas.messages import (
    BusinessEvent,
    PublishingOptions,
    Query,
    SubscriptionOptions,
    Zone,
)
from zonebus.transport.base import EventReceiver, RequestHandler
from zonebus.utils.errors import ZoneConnectionError
from zonebus.utils.telemetry import get_logger


class CollectingChannel:
    """Response channel that keeps every written record in memory."""

    def __init__(self) -> None:
        self.records: list[Any] = []

    async def write(self, record: Any) -> None:
        self.records.append(record)


class InMemoryTransport:
    """Loopback transport for tests, demos and single-process agents."""

    def __init__(self, fail_zones: Iterable[str] = ()) -> None:
        """Initialize the transport.

        Args:
            fail_zones: Zone ids whose connect() attempts should fail
        """
        self.fail_zones = {zone_id.lower() for zone_id in fail_zones}
        self.connected: dict[str, Zone] = {}
        self.reported: dict[str, list[BusinessEvent]] = defaultdict(list)
        self.queries: dict[str, list[Query]] = defaultdict(list)
        self.closed = False

        self._publishers: dict[
            tuple[str, str], list[tuple[RequestHandler, PublishingOptions]]
        ] = defaultdict(list)
        self._subscribers: dict[
            tuple[str, str], list[tuple[EventReceiver, SubscriptionOptions]]
        ] = defaultdict(list)
        self._seeded: dict[tuple[str, str], list[Any]] = defaultdict(list)
        self._logger = get_logger("zonebus.transport.memory")

    def seed_records(self, zone_id: str, object_type: str, records: Iterable[Any]) -> None:
        """Make a zone answer queries for object_type with these records."""
        self._seeded[(zone_id.lower(), object_type)].extend(records)

    def is_connected(self, zone: Zone) -> bool:
        return zone.zone_id.lower() in self.connected

    def _require_connected(self, zone: Zone) -> None:
        if not self.is_connected(zone):
            raise ZoneConnectionError(zone.zone_id, "zone is not connected")

    async def connect(self, zone: Zone) -> None:
        if zone.zone_id.lower() in self.fail_zones:
            raise ZoneConnectionError(zone.zone_id, "connection refused")

        self.connected[zone.zone_id.lower()] = zone
        self.closed = False
        self._logger.info("Zone connected", zone_id=zone.zone_id, url=zone.url)

    async def assign_publisher(
        self,
        zone: Zone,
        publisher: RequestHandler,
        object_type: str,
        options: PublishingOptions,
    ) -> None:
        registered = self._publishers[(zone.zone_id.lower(), object_type)]
        if all(existing is not publisher for existing, _ in registered):
            registered.append((publisher, options))

    async def assign_subscriber(
        self,
        zone: Zone,
        subscriber: EventReceiver,
        object_type: str,
        options: SubscriptionOptions,
    ) -> None:
        registered = self._subscribers[(zone.zone_id.lower(), object_type)]
        if all(existing is not subscriber for existing, _ in registered):
            registered.append((subscriber, options))

    def publishers_for(self, zone_id: str, object_type: str) -> list[RequestHandler]:
        return [p for p, _ in self._publishers.get((zone_id.lower(), object_type), [])]

    def subscribers_for(self, zone_id: str, object_type: str) -> list[EventReceiver]:
        return [s for s, _ in self._subscribers.get((zone_id.lower(), object_type), [])]

    async def report_event(self, zone: Zone, event: BusinessEvent) -> None:
        self._require_connected(zone)
        key = zone.zone_id.lower()
        self.reported[key].append(event)

        for subscriber, options in list(self._subscribers.get((key, event.object_type), [])):
            if not options.receive_events:
                continue
            if not subscriber.consumers_started:
                self._logger.debug(
                    "Skipping subscriber without running consumers",
                    zone_id=zone.zone_id,
                    subscriber_id=subscriber.entity_id,
                )
                continue
            await subscriber.on_event([event], zone)

    async def query(self, zone: Zone, query: Query) -> None:
        self._require_connected(zone)
        key = zone.zone_id.lower()
        self.queries[key].append(query)

        channel = CollectingChannel()
        channel.records.extend(self._seeded.get((key, query.object_type), []))
        for publisher, options in list(self._publishers.get((key, query.object_type), [])):
            if options.respond_to_requests:
                await publisher.on_request(query, zone, channel)

        for subscriber, options in list(self._subscribers.get((key, query.object_type), [])):
            if not options.receive_query_results:
                continue
            if query.requester_id is not None and subscriber.entity_id != query.requester_id:
                continue
            await subscriber.on_query_results(list(channel.records), zone)

    async def close(self) -> None:
        for zone in self.connected.values():
            self._logger.info("Zone disconnected", zone_id=zone.zone_id)
        self.connected.clear()
        self.closed = True
