"""Explicit registry of publisher, subscriber and transport implementations.

Configuration names implementations by key; every key is resolved when
the agent is built, so a typo fails startup instead of a later tick.
"""

from collections.abc import Callable
from typing import Any, TypeVar

from zonebus.config.config import AgentConfig, EntityConfig
from zonebus.core.publisher import BasePublisher
from zonebus.core.subscriber import BaseSubscriber
from zonebus.transport.base import Transport
from zonebus.transport.memory import InMemoryTransport
from zonebus.utils.errors import ConfigurationError, UnknownEntityError
from zonebus.utils.telemetry import get_logger

EntityFactory = Callable[[str], Any]
TransportFactory = Callable[[AgentConfig], Transport]
F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)


class EntityRegistry:
    """Maps implementation keys to factories.

    Entity factories take the entity id; a publisher or subscriber class
    is itself a valid factory. Transport factories take the agent config.
    """

    def __init__(self) -> None:
        self._publishers: dict[str, EntityFactory] = {}
        self._subscribers: dict[str, EntityFactory] = {}
        self._transports: dict[str, TransportFactory] = {}

    @staticmethod
    def _add(kind: str, table: dict[str, Any], key: str, factory: Any) -> None:
        if not key:
            raise ValueError(f"{kind} key cannot be empty")
        existing = table.get(key)
        if existing is not None and existing is not factory:
            raise ValueError(f"{kind} '{key}' is already registered")
        table[key] = factory

    def register_publisher(self, key: str, factory: EntityFactory) -> None:
        self._add("publisher", self._publishers, key, factory)

    def register_subscriber(self, key: str, factory: EntityFactory) -> None:
        self._add("subscriber", self._subscribers, key, factory)

    def register_transport(self, name: str, factory: TransportFactory) -> None:
        self._add("transport", self._transports, name, factory)

    def publisher(self, key: str | None = None) -> Callable[[F], F]:
        """Class decorator registering a publisher under key (default: class name)."""

        def decorator(cls: F) -> F:
            self.register_publisher(key or cls.__name__, cls)
            return cls

        return decorator

    def subscriber(self, key: str | None = None) -> Callable[[F], F]:
        """Class decorator registering a subscriber under key (default: class name)."""

        def decorator(cls: F) -> F:
            self.register_subscriber(key or cls.__name__, cls)
            return cls

        return decorator

    @property
    def publisher_keys(self) -> list[str]:
        return sorted(self._publishers)

    @property
    def subscriber_keys(self) -> list[str]:
        return sorted(self._subscribers)

    @property
    def transport_names(self) -> list[str]:
        return sorted(self._transports)

    def _build(
        self,
        kind: str,
        factories: dict[str, EntityFactory],
        configs: list[EntityConfig],
        base_type: type,
    ) -> list[Any]:
        unknown = [c.implementation for c in configs if c.implementation not in factories]
        if unknown:
            raise UnknownEntityError(kind, unknown, sorted(factories))

        entities = []
        for entity_config in configs:
            entity = factories[entity_config.implementation](entity_config.entity_id)
            if not isinstance(entity, base_type):
                raise ConfigurationError(
                    f"{kind} '{entity_config.implementation}' produced "
                    f"{type(entity).__name__}, expected a {base_type.__name__}"
                )
            entities.append(entity)
            logger.debug(
                "Entity created",
                kind=kind,
                implementation=entity_config.implementation,
                entity_id=entity.entity_id,
            )
        return entities

    def build_publishers(self, config: AgentConfig) -> list[BasePublisher]:
        """Instantiate every configured publisher, in configuration order.

        Raises:
            UnknownEntityError: If any implementation key is not registered
            ConfigurationError: If a factory returns something else than a publisher
        """
        return self._build("publisher", self._publishers, config.publishers, BasePublisher)

    def build_subscribers(self, config: AgentConfig) -> list[BaseSubscriber]:
        """Instantiate every configured subscriber, in configuration order.

        Raises:
            UnknownEntityError: If any implementation key is not registered
            ConfigurationError: If a factory returns something else than a subscriber
        """
        return self._build(
            "subscriber", self._subscribers, config.subscribers, BaseSubscriber
        )

    def create_transport(self, config: AgentConfig) -> Transport:
        factory = self._transports.get(config.transport)
        if factory is None:
            raise UnknownEntityError("transport", [config.transport], self.transport_names)
        return factory(config)


default_registry = EntityRegistry()
default_registry.register_transport("memory", lambda config: InMemoryTransport())
