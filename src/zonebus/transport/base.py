"""Contract between the agent runtime and the zone transport.

The transport owns the wire: connecting to zones, registering interest,
sending events and queries. It calls back into publishers and
subscribers when something arrives.
"""

from collections.abc import Iterable
from typing import Any, Protocol

from zonebus.schemas.messages import (
    BusinessEvent,
    PublishingOptions,
    Query,
    SubscriptionOptions,
    Zone,
    ZoneErrorReport,
)


class ResponseChannel(Protocol):
    """Where a publisher writes the records answering one query."""

    async def write(self, record: Any) -> None:
        ...


class RequestHandler(Protocol):
    """Publisher side of the delivery callbacks."""

    entity_id: str

    async def on_request(
        self,
        query: Query,
        zone: Zone,
        channel: ResponseChannel,
        message_info: dict[str, Any] | None = None,
    ) -> Any:
        ...


class EventReceiver(Protocol):
    """Subscriber side of the delivery callbacks."""

    entity_id: str

    @property
    def consumers_started(self) -> bool:
        ...

    async def on_event(
        self,
        events: Iterable[BusinessEvent],
        zone: Zone,
        message_info: dict[str, Any] | None = None,
    ) -> int:
        ...

    async def on_query_results(
        self,
        records: Iterable[Any],
        zone: Zone,
        message_info: dict[str, Any] | None = None,
        error: ZoneErrorReport | None = None,
    ) -> int:
        ...


class Transport(Protocol):
    """Operations the runtime needs from the zone transport."""

    async def connect(self, zone: Zone) -> None:
        """Connect and register the agent with a zone.

        Raises:
            ZoneConnectionError: If the zone cannot be reached
        """
        ...

    async def assign_publisher(
        self,
        zone: Zone,
        publisher: RequestHandler,
        object_type: str,
        options: PublishingOptions,
    ) -> None:
        ...

    async def assign_subscriber(
        self,
        zone: Zone,
        subscriber: EventReceiver,
        object_type: str,
        options: SubscriptionOptions,
    ) -> None:
        ...

    async def query(self, zone: Zone, query: Query) -> None:
        ...

    async def report_event(self, zone: Zone, event: BusinessEvent) -> None:
        ...

    async def close(self) -> None:
        """Disconnect from every zone this transport connected to."""
        ...
