"""Data models and type definitions for the zonebus agent runtime."""

from .messages import (
    BusinessEvent,
    FieldRule,
    InboundMessage,
    MappingContext,
    MappingInfo,
    Message,
    PublishingOptions,
    Query,
    SubscriptionOptions,
    Zone,
    ZoneErrorReport,
)
from .types import EventAction, MappingDirection, MessageKind, StopToken

__all__ = [
    "BusinessEvent",
    "EventAction",
    "FieldRule",
    "InboundMessage",
    "MappingContext",
    "MappingDirection",
    "MappingInfo",
    "Message",
    "MessageKind",
    "PublishingOptions",
    "Query",
    "StopToken",
    "SubscriptionOptions",
    "Zone",
    "ZoneErrorReport",
]
