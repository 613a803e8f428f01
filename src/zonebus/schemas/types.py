"""Core enumerations and the cooperative stop token."""

import asyncio
from enum import Enum


class EventAction(str, Enum):
    """What happened to the business object an event describes."""

    CREATE = "create"
    CHANGE = "change"
    DELETE = "delete"


class MessageKind(str, Enum):
    """Discriminator for messages buffered in a subscriber queue."""

    EVENT = "event"
    QUERY_RESULT = "query_result"


class MappingDirection(str, Enum):
    """Direction of a field-translation ruleset."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class StopToken:
    """Shared flag for cooperatively stopping worker loops.

    Workers check the token around every blocking pull and wait on it
    alongside the queue, so stopping never has to interrupt a blocked call.
    """

    def __init__(self, owner_id: str) -> None:
        """Initialize a new stop token.

        Args:
            owner_id: Identifier of the pool or entity this token belongs to

        Raises:
            ValueError: If owner_id is empty
        """
        if not owner_id.strip():
            raise ValueError("owner_id cannot be empty")

        self.owner_id = owner_id
        self._stopped = asyncio.Event()
        self.reason: str | None = None

    @property
    def stopped(self) -> bool:
        """Check if stop has been requested."""
        return self._stopped.is_set()

    def stop(self, reason: str) -> None:
        """Request a stop with a specific reason.

        Args:
            reason: Human-readable reason for stopping

        Raises:
            ValueError: If reason is empty
        """
        if not reason.strip():
            raise ValueError("Stop reason cannot be empty")

        if self.reason is None:
            self.reason = reason
        self._stopped.set()

    async def wait(self) -> None:
        """Wait until stop() is called on this token."""
        await self._stopped.wait()

    def __repr__(self) -> str:
        status = "stopped" if self.stopped else "active"
        reason_info = f", reason={self.reason}" if self.reason else ""
        return f"StopToken(owner_id={self.owner_id}, status={status}{reason_info})"
