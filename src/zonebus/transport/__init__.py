"""Zone transport contract and the in-memory implementation."""

from .base import EventReceiver, RequestHandler, ResponseChannel, Transport
from .memory import CollectingChannel, InMemoryTransport

__all__ = [
    "CollectingChannel",
    "EventReceiver",
    "InMemoryTransport",
    "RequestHandler",
    "ResponseChannel",
    "Transport",
]
