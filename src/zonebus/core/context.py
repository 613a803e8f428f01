"""Shared, immutable context held by every publisher and subscriber."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from zonebus.config.config import AgentConfig
from zonebus.schemas.messages import Zone

if TYPE_CHECKING:
    from zonebus.mapping.resolver import MappingResolver
    from zonebus.transport.base import Transport


@dataclass(frozen=True)
class AgentContext:
    """Everything an entity needs to know about the agent it runs in.

    Built once by the orchestrator and bound to each entity before that
    entity touches any zone. Zones keep configuration order, which is
    also the order events fan out in.
    """

    agent_id: str
    zones: tuple[Zone, ...]
    settings: AgentConfig
    transport: "Transport"
    mapping_profile: str = "Default"
    application_id: str | None = None
    mapping_resolver: "MappingResolver | None" = field(default=None, compare=False)

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        transport: "Transport",
        mapping_resolver: "MappingResolver | None" = None,
    ) -> "AgentContext":
        return cls(
            agent_id=config.agent_id,
            zones=tuple(config.zones),
            settings=config,
            transport=transport,
            mapping_profile=config.mapping_profile,
            application_id=config.application_id,
            mapping_resolver=mapping_resolver,
        )

    def zone_by_id(self, zone_id: str) -> Zone | None:
        """Find a zone by identifier, ignoring case."""
        wanted = zone_id.lower()
        for zone in self.zones:
            if zone.zone_id.lower() == wanted:
                return zone
        return None

    def is_valid_zone(self, zone: Zone | None) -> bool:
        """True if zone is one of this agent's zones."""
        if zone is None:
            return False
        return self.zone_by_id(zone.zone_id) is not None
