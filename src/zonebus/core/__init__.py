"""Agent runtime: context, queues, consumers, publishers, subscribers, scheduling."""

from .consumer import ConsumerPool
from .context import AgentContext
from .orchestrator import AgentOrchestrator
from .publisher import BasePublisher, BroadcastResult, ResponseResult
from .queue import MessageQueue
from .registry import EntityRegistry, default_registry
from .scheduler import ScheduleEntry, TaskScheduler, plan_schedule
from .streams import IterableRecordStream, RecordStream, as_record_stream
from .subscriber import BaseSubscriber

__all__ = [
    "AgentContext",
    "AgentOrchestrator",
    "BasePublisher",
    "BaseSubscriber",
    "BroadcastResult",
    "ConsumerPool",
    "EntityRegistry",
    "IterableRecordStream",
    "MessageQueue",
    "RecordStream",
    "ResponseResult",
    "ScheduleEntry",
    "TaskScheduler",
    "as_record_stream",
    "default_registry",
    "plan_schedule",
]
