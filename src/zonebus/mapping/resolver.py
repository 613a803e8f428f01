"""Mapping resolution for outbound and inbound business objects.

The field-mapping engine itself lives outside this package; here we only
select the ruleset that applies to an object type and direction, and
normalize what callers see: a failed resolution and a ruleset without
field rules both come back as ``None``.
"""

from typing import Any, Protocol

from pydantic import ValidationError

from zonebus.config.config import AgentConfig
from zonebus.schemas.messages import FieldRule, MappingContext
from zonebus.schemas.types import MappingDirection
from zonebus.utils.errors import MappingError


class MappingResolver(Protocol):
    """Protocol for resolving the mapping context of one object type."""

    def resolve(
        self,
        object_type: str,
        direction: MappingDirection,
        message_info: dict[str, Any] | None = None,
    ) -> MappingContext | None:
        """Resolve the ruleset for an object type and direction.

        Raises:
            MappingError: If the ruleset exists but cannot be resolved
        """
        ...


class ProfileMappingResolver:
    """Resolves rulesets from one named profile of ``AgentConfig.mappings``."""

    def __init__(
        self,
        profiles: dict[str, dict[str, dict[str, list[dict[str, Any]]]]],
        profile: str = "Default",
    ):
        self.profiles = profiles
        self.profile = profile

    @classmethod
    def from_config(cls, config: AgentConfig) -> "ProfileMappingResolver":
        return cls(config.mappings, config.mapping_profile)

    def resolve(
        self,
        object_type: str,
        direction: MappingDirection,
        message_info: dict[str, Any] | None = None,
    ) -> MappingContext | None:
        rules_by_type = self.profiles.get(self.profile)
        if not rules_by_type:
            return None

        directions = rules_by_type.get(object_type)
        if directions is None:
            return None

        raw_rules = directions.get(direction.value, [])
        try:
            rules = tuple(FieldRule(**rule) for rule in raw_rules)
        except (TypeError, ValidationError) as e:
            raise MappingError(object_type, direction.value, str(e)) from e

        return MappingContext(
            object_type=object_type,
            direction=direction,
            profile=self.profile,
            field_rules=rules,
        )


class NullMappingResolver:
    """Resolver for agents without any mappings."""

    def resolve(
        self,
        object_type: str,
        direction: MappingDirection,
        message_info: dict[str, Any] | None = None,
    ) -> MappingContext | None:
        return None


def select_mapping(
    resolver: MappingResolver | None,
    object_type: str,
    direction: MappingDirection,
    logger: Any,
    message_info: dict[str, Any] | None = None,
    detailed: bool = False,
) -> MappingContext | None:
    """Resolve a mapping and normalize the result for callers.

    Resolution failures are logged and treated as "no mapping"; so is a
    ruleset with zero field rules.

    Args:
        resolver: Resolver to ask (None means no mappings are configured)
        object_type: Object type to resolve
        direction: Inbound or outbound
        logger: Bound logger of the calling entity
        message_info: Transport message metadata, if any
        detailed: Log the resolved ruleset's details

    Returns:
        The mapping context, or None
    """
    if resolver is None:
        return None

    try:
        mapping = resolver.resolve(object_type, direction, message_info)
    except Exception as e:
        logger.error(
            "Failed retrieving mapping context",
            object_type=object_type,
            direction=direction.value,
            error=str(e),
            error_type=type(e).__name__,
        )
        return None

    if mapping is not None and detailed:
        logger.debug(
            "Mapping resolved",
            object_type=mapping.object_type,
            direction=mapping.direction.value,
            profile=mapping.profile,
            fields_mapped=len(mapping.field_rules),
        )

    if mapping is not None and mapping.is_empty:
        mapping = None

    logger.debug(
        "Mapping lookup complete",
        object_type=object_type,
        direction=direction.value,
        mapping_exists=mapping is not None,
    )
    return mapping
