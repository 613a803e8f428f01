"""zonebus - publish/subscribe agents for zone-based business events.

An agent connects to one or more zones, broadcasts events and answers
queries through publishers, and buffers inbound events and query results
for a pool of consumer workers through subscribers.
"""

__version__ = "0.1.0"

from .config import AgentConfig, DebugLevel, load_config
from .core import (
    AgentContext,
    AgentOrchestrator,
    BasePublisher,
    BaseSubscriber,
    BroadcastResult,
    ConsumerPool,
    EntityRegistry,
    IterableRecordStream,
    MessageQueue,
    RecordStream,
    ResponseResult,
    TaskScheduler,
    default_registry,
)
from .schemas import (
    BusinessEvent,
    EventAction,
    InboundMessage,
    MappingContext,
    MappingInfo,
    PublishingOptions,
    Query,
    SubscriptionOptions,
    Zone,
    ZoneErrorReport,
)
from .transport import InMemoryTransport, Transport

__all__ = [
    "AgentConfig",
    "AgentContext",
    "AgentOrchestrator",
    "BasePublisher",
    "BaseSubscriber",
    "BroadcastResult",
    "BusinessEvent",
    "ConsumerPool",
    "DebugLevel",
    "EntityRegistry",
    "EventAction",
    "InMemoryTransport",
    "InboundMessage",
    "IterableRecordStream",
    "MappingContext",
    "MappingInfo",
    "MessageQueue",
    "PublishingOptions",
    "Query",
    "RecordStream",
    "ResponseResult",
    "SubscriptionOptions",
    "TaskScheduler",
    "Transport",
    "Zone",
    "ZoneErrorReport",
    "__version__",
    "default_registry",
    "load_config",
]
