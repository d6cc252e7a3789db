# =============================================================================
# pos_core/offline/consumers.py
# Mutation Kinds and the Consumer Registry
# =============================================================================
"""
The producer/consumer boundary of the offline queue.

Producers enqueue opaque payloads tagged with a kind. Domain code binds
exactly one consumer per kind at startup; the sync coordinator looks the
consumer up here and never interprets payloads itself.

Usage:
    registry = ConsumerRegistry()
    registry.register(MutationKind.CREATE, gateway.create_order)
    consumer = registry.resolve("create")
    ok = await consumer(payload)
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Union
import logging

from pos_core.errors import ConfigurationError, UnregisteredConsumerError

logger = logging.getLogger(__name__)


class MutationKind(str, Enum):
    """Known mutation kinds. Plain strings are accepted as well."""
    CREATE = "create"
    UPDATE = "update"


# A consumer applies one payload remotely and reports success.
MutationConsumer = Callable[[Any], Union[bool, Awaitable[bool]]]


def normalize_kind(kind: Union[str, MutationKind]) -> str:
    """Return the routing string for a kind."""
    if isinstance(kind, MutationKind):
        return kind.value
    if not isinstance(kind, str) or not kind.strip():
        raise ValueError(f"Mutation kind must be a non-empty string, got {kind!r}")
    return kind.strip()


class ConsumerRegistry:
    """Explicit kind -> consumer table owned by the sync coordinator."""

    def __init__(self):
        self._consumers: Dict[str, MutationConsumer] = {}

    def register(
        self,
        kind: Union[str, MutationKind],
        consumer: MutationConsumer,
        replace: bool = False,
    ) -> None:
        """
        Bind a consumer to a kind.

        Raises:
            ConfigurationError: if the kind already has a consumer and
                replace is False
        """
        key = normalize_kind(kind)
        if not callable(consumer):
            raise ConfigurationError(
                f"Consumer for '{key}' is not callable",
                config_key=key,
                expected_type="callable",
            )
        if key in self._consumers and not replace:
            raise ConfigurationError(
                f"A consumer is already registered for mutation kind '{key}'",
                config_key=key,
            )
        self._consumers[key] = consumer
        logger.debug(f"Registered consumer for '{key}'")

    def unregister(self, kind: Union[str, MutationKind]) -> bool:
        return self._consumers.pop(normalize_kind(kind), None) is not None

    def resolve(self, kind: Union[str, MutationKind]) -> MutationConsumer:
        key = normalize_kind(kind)
        try:
            return self._consumers[key]
        except KeyError:
            raise UnregisteredConsumerError(key) from None

    def kinds(self) -> List[str]:
        return sorted(self._consumers)

    def __contains__(self, kind: object) -> bool:
        if not isinstance(kind, (str, MutationKind)):
            return False
        try:
            return normalize_kind(kind) in self._consumers
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._consumers)
