"""Bounded FIFO buffer between transport deliveries and consumer workers."""

import asyncio

from zonebus.schemas.messages import InboundMessage
from zonebus.schemas.types import StopToken
from zonebus.utils.telemetry import (
    get_logger,
    record_backpressure_wait,
    record_queue_depth,
)


class MessageQueue:
    """Bounded queue of inbound messages for one subscriber.

    ``put`` waits while the queue is full; that wait is the only
    backpressure in the system. ``get`` waits while the queue is empty
    but also wakes up when the pool's stop token fires, so workers never
    have to be interrupted to stop.
    """

    def __init__(self, capacity: int, queue_id: str, entity_id: str = "unknown"):
        """Initialize the queue.

        Args:
            capacity: Maximum number of buffered messages, fixed for the queue's life
            queue_id: Identifier used in logs
            entity_id: Owning subscriber, used as the metrics label

        Raises:
            ValueError: If capacity is not positive
        """
        if capacity < 1:
            raise ValueError(f"Queue capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self.queue_id = queue_id
        self.entity_id = entity_id
        self._queue: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=capacity)
        self._logger = get_logger("zonebus.queue", queue_id=queue_id)

    async def put(self, message: InboundMessage, stop_token: StopToken | None = None) -> bool:
        """Push a message, waiting for a free slot if the queue is full.

        When ``stop_token`` is given, a wait for a free slot ends as soon as
        the token is stopped, and a stopped token rejects the push outright.

        Returns:
            True if the message was queued, False if it was dropped on stop
        """
        if stop_token is not None and stop_token.stopped:
            self._reject(message, stop_token)
            return False

        if self._queue.full():
            record_backpressure_wait(self.entity_id)
            self._logger.debug(
                "Queue full, waiting for a free slot",
                capacity=self.capacity,
                message_id=message.message_id,
            )

        if stop_token is None:
            await self._queue.put(message)
        else:
            put_task = asyncio.ensure_future(self._queue.put(message))
            stop_task = asyncio.ensure_future(stop_token.wait())
            try:
                await asyncio.wait(
                    {put_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                stop_task.cancel()
                if not put_task.done():
                    put_task.cancel()

            if not put_task.done() or put_task.cancelled():
                self._reject(message, stop_token)
                return False
            put_task.result()

        record_queue_depth(self.entity_id, self._queue.qsize())
        return True

    def _reject(self, message: InboundMessage, stop_token: StopToken) -> None:
        self._logger.warning(
            "Dropping message pushed after stop",
            message_id=message.message_id,
            kind=message.kind.value,
            reason=stop_token.reason,
        )

    async def get(self, stop_token: StopToken) -> InboundMessage | None:
        """Pull the oldest message.

        Returns:
            The next message, or None once ``stop_token`` has been stopped
        """
        if stop_token.stopped:
            return None

        get_task = asyncio.ensure_future(self._queue.get())
        stop_task = asyncio.ensure_future(stop_token.wait())
        try:
            await asyncio.wait(
                {get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_task.cancel()
            if not get_task.done():
                get_task.cancel()

        if get_task.done() and not get_task.cancelled():
            message = get_task.result()
            self._queue.task_done()
            if stop_token.stopped:
                # Stop and a message raced; hand it over rather than lose it.
                self._logger.debug(
                    "Delivering message pulled during stop",
                    message_id=message.message_id,
                )
            return message

        return None

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    def empty(self) -> bool:
        return self._queue.empty()

    def drain(self) -> list[InboundMessage]:
        """Remove and return everything still buffered."""
        remaining = []
        while not self._queue.empty():
            remaining.append(self._queue.get_nowait())
            self._queue.task_done()
        return remaining
