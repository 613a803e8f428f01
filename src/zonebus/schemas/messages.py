"""Pydantic models for zones, business events and buffered messages."""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from zonebus.schemas.types import EventAction, MappingDirection, MessageKind


class Zone(BaseModel):
    """A messaging endpoint an agent connects to."""

    zone_id: str = Field(
        description="Zone identifier",
        min_length=1,
        json_schema_extra={"example": "district-north"},
    )
    url: str = Field(
        default="",
        description="Connection URL of the zone",
        json_schema_extra={"example": "https://zis.example.org/north"},
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __str__(self) -> str:
        return self.zone_id


class FieldRule(BaseModel):
    """One field translation between external and internal representations."""

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    default: Any = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class MappingContext(BaseModel):
    """Resolved field-translation ruleset for one object type and direction."""

    object_type: str
    direction: MappingDirection
    profile: str = "Default"
    field_rules: tuple[FieldRule, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        """True when the ruleset carries no field rules."""
        return len(self.field_rules) == 0


class MappingInfo(BaseModel):
    """Transport message metadata plus the mapping resolved for it."""

    message_info: dict[str, Any] | None = None
    mapping: MappingContext | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def has_mapping(self) -> bool:
        return self.mapping is not None


class BusinessEvent(BaseModel):
    """A create/change/delete notification about one business object."""

    object_type: str = Field(min_length=1)
    payload: Any = None
    action: EventAction = EventAction.CHANGE


class Query(BaseModel):
    """Request for all objects of one type, optionally narrowed by conditions."""

    object_type: str = Field(min_length=1)
    conditions: dict[str, Any] = Field(default_factory=dict)
    requester_id: str | None = Field(
        default=None, description="Subscriber that should receive the results"
    )


class ZoneErrorReport(BaseModel):
    """Error returned by a zone in place of query results."""

    code: str
    category: str = ""
    description: str = ""
    extended_description: str = ""


class PublishingOptions(BaseModel):
    """Options a publisher registers with each zone."""

    respond_to_requests: bool = True
    extra: dict[str, Any] = Field(default_factory=dict)


class SubscriptionOptions(BaseModel):
    """Options a subscriber registers with each zone."""

    receive_events: bool = True
    receive_query_results: bool = True
    extra: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """Base record for anything buffered by the agent."""

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    num_retries: int = Field(default=0, ge=0)


class InboundMessage(Message):
    """An inbound event or query result waiting for a consumer worker."""

    kind: MessageKind
    payload: Any = None
    zone: Zone
    mapping_info: MappingInfo = Field(default_factory=MappingInfo)
    action: EventAction | None = None

    @model_validator(mode="after")
    def check_action_matches_kind(self) -> "InboundMessage":
        """Events carry an action; query results never do."""
        if self.kind is MessageKind.EVENT and self.action is None:
            raise ValueError("event messages require an action")
        if self.kind is MessageKind.QUERY_RESULT and self.action is not None:
            raise ValueError("query result messages cannot carry an action")
        return self

    @property
    def is_event(self) -> bool:
        return self.kind is MessageKind.EVENT

    @classmethod
    def for_event(
        cls,
        payload: Any,
        zone: Zone,
        mapping_info: MappingInfo,
        action: EventAction,
    ) -> "InboundMessage":
        return cls(
            kind=MessageKind.EVENT,
            payload=payload,
            zone=zone,
            mapping_info=mapping_info,
            action=action,
        )

    @classmethod
    def for_query_result(
        cls, payload: Any, zone: Zone, mapping_info: MappingInfo
    ) -> "InboundMessage":
        return cls(
            kind=MessageKind.QUERY_RESULT,
            payload=payload,
            zone=zone,
            mapping_info=mapping_info,
        )
