"""Fixed-size pool of workers draining one subscriber's queue."""

import asyncio
from typing import Any, Protocol

from zonebus.core.queue import MessageQueue
from zonebus.schemas.messages import BusinessEvent, InboundMessage, MappingInfo, Zone
from zonebus.schemas.types import StopToken
from zonebus.utils.errors import ProcessingError
from zonebus.utils.telemetry import (
    describe_payload,
    get_logger,
    record_message_processed,
)


class MessageHandler(Protocol):
    """What a consumer worker dispatches to."""

    entity_id: str
    object_type: str

    async def process_event(
        self, event: BusinessEvent, zone: Zone, mapping_info: MappingInfo, consumer_id: str
    ) -> None:
        ...

    async def process_response(
        self, payload: Any, zone: Zone, mapping_info: MappingInfo, consumer_id: str
    ) -> None:
        ...


class ConsumerPool:
    """Workers that pull messages and hand them to the subscriber's handlers.

    A handler failure is logged with the payload and counted; the worker
    then moves on to the next message. Stopping is cooperative through a
    StopToken: idle workers wake up and exit, busy ones finish their
    current message first.
    """

    def __init__(self, queue: MessageQueue, handler: MessageHandler, size: int):
        """Initialize the pool.

        Args:
            queue: Queue shared by every worker of the pool
            handler: Subscriber receiving dispatched messages
            size: Number of workers, fixed for the pool's life

        Raises:
            ValueError: If size is not positive
        """
        if size < 1:
            raise ValueError(f"Consumer pool size must be at least 1, got {size}")

        self.queue = queue
        self.handler = handler
        self.size = size
        self.stop_token = StopToken(f"{handler.entity_id}ConsumerPool")

        self.processed_count = 0
        self.failed_count = 0

        self._tasks: list[asyncio.Task[None]] = []
        self._logger = get_logger("zonebus.consumer", entity_id=handler.entity_id)

    @property
    def consumer_ids(self) -> list[str]:
        return [f"{self.handler.entity_id}Consumer {i + 1}" for i in range(self.size)]

    @property
    def succeeded_count(self) -> int:
        return self.processed_count - self.failed_count

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self.stop_token.stopped

    def start(self) -> None:
        """Start every worker on the running event loop.

        Raises:
            RuntimeError: If the pool was already started
        """
        if self._tasks or self.stop_token.stopped:
            raise RuntimeError(f"Consumer pool of {self.handler.entity_id} already started")

        for consumer_id in self.consumer_ids:
            self._tasks.append(
                asyncio.create_task(self._worker(consumer_id), name=consumer_id)
            )

        self._logger.info(
            "Consumer pool started",
            workers=self.size,
            queue_capacity=self.queue.capacity,
        )

    async def _worker(self, consumer_id: str) -> None:
        self._logger.debug("Consumer started", consumer_id=consumer_id)
        while True:
            message = await self.queue.get(self.stop_token)
            if message is None:
                break
            await self._dispatch(message, consumer_id)
        self._logger.debug("Consumer stopped", consumer_id=consumer_id)

    async def _dispatch(self, message: InboundMessage, consumer_id: str) -> None:
        kind = message.kind.value
        try:
            if message.is_event:
                event = BusinessEvent(
                    object_type=self.handler.object_type,
                    payload=message.payload,
                    action=message.action,
                )
                await self.handler.process_event(
                    event, message.zone, message.mapping_info, consumer_id
                )
            else:
                await self.handler.process_response(
                    message.payload, message.zone, message.mapping_info, consumer_id
                )
        except Exception as e:
            self.failed_count += 1
            record_message_processed(self.handler.entity_id, kind, "failed")
            error = ProcessingError(self.handler.entity_id, str(e), message.payload)
            self._logger.error(
                str(error),
                consumer_id=consumer_id,
                message_id=message.message_id,
                kind=kind,
                zone_id=message.zone.zone_id,
                payload=describe_payload(error.payload),
                error_type=type(e).__name__,
                recovery_action=error.recovery_action.value,
            )
        else:
            record_message_processed(self.handler.entity_id, kind, "success")
        finally:
            self.processed_count += 1

    async def shutdown(self, timeout: float = 5.0, reason: str = "pool shutdown") -> None:
        """Stop all workers.

        Workers get ``timeout`` seconds to finish their current message;
        any still running after that are cancelled. Producers waiting for a
        free slot give up as soon as the pool stops, and messages left in
        the queue are dropped.
        """
        self.stop_token.stop(reason)
        if not self._tasks:
            return

        _, pending = await asyncio.wait(self._tasks, timeout=timeout)

        if pending:
            self._logger.warning(
                "Cancelling consumers that did not stop in time",
                pending=len(pending),
                timeout=timeout,
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        dropped = self.queue.drain()
        if dropped:
            self._logger.warning(
                "Dropping buffered messages on shutdown", dropped=len(dropped)
            )

        self._tasks = []
        self._logger.info(
            "Consumer pool stopped",
            processed=self.processed_count,
            failed=self.failed_count,
        )
