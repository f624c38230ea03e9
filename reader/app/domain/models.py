"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Union

from reader.app.core.errors import ConfigurationError

Scalar = Union[str, int, float, bool, datetime, None]


class EntityKind(str, Enum):
    QUEUE = "queue"
    TOPIC = "topic"


@dataclass(frozen=True)
class EntityDescriptor:
    """A queue, or a topic + subscription pair, addressed by name."""

    kind: EntityKind
    name: str
    subscription: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError("entity name is required")
        if self.kind == EntityKind.TOPIC:
            if not self.subscription or not self.subscription.strip():
                raise ConfigurationError(f"subscription name is required for topic {self.name!r}")
        elif self.subscription is not None:
            raise ConfigurationError("subscription is only valid for topics")

    @staticmethod
    def queue(name: str) -> "EntityDescriptor":
        return EntityDescriptor(EntityKind.QUEUE, name.strip())

    @staticmethod
    def topic(name: str, subscription: str) -> "EntityDescriptor":
        return EntityDescriptor(EntityKind.TOPIC, name.strip(), (subscription or "").strip())

    @property
    def path(self) -> str:
        if self.kind == EntityKind.TOPIC:
            return f"{self.name}/subscriptions/{self.subscription}"
        return self.name


@dataclass(frozen=True)
class ReceiverOptions:
    max_concurrent: int = 1
    auto_complete: bool = False


@dataclass(frozen=True)
class DeliveredMessage:
    """One delivery attempt of a broker message, valid while its lease is held."""

    message_id: str
    body: bytes
    lock_token: str
    delivery_count: int = 1
    enqueued_time: datetime | None = None
    content_type: str | None = None
    application_properties: Mapping[str, Scalar] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.body, (bytes, bytearray)):
            raise TypeError("message.body must be bytes")
        if not isinstance(self.delivery_count, int) or self.delivery_count < 1:
            raise ValueError("message.delivery_count must be an int >= 1")
        # read-only view, insertion order preserved
        object.__setattr__(
            self,
            "application_properties",
            MappingProxyType(dict(self.application_properties)),
        )


class MessageAction(str, Enum):
    COMPLETE = "Complete"
    ABANDON = "Abandon"
    DEAD_LETTER = "DeadLetter"
    SKIP = "Skip"


DEAD_LETTER_REASON = "User requested"
DEAD_LETTER_DESCRIPTION = "Message moved to dead letter queue by user choice"


@dataclass(frozen=True)
class Acknowledged:
    message_id: str
    failed: bool = False
    terminal = True


@dataclass(frozen=True)
class Requeued:
    message_id: str
    failed: bool = False
    terminal = True


@dataclass(frozen=True)
class DeadLettered:
    message_id: str
    reason: str = DEAD_LETTER_REASON
    description: str = DEAD_LETTER_DESCRIPTION
    failed: bool = False
    terminal = True


@dataclass(frozen=True)
class Skipped:
    """Lease left outstanding; the broker redelivers after it expires."""

    message_id: str
    failed: bool = False
    terminal = False


ResolutionOutcome = Union[Acknowledged, Requeued, DeadLettered, Skipped]


@dataclass(frozen=True)
class RetryInput:
    """Prompt result for a token that maps to no action. The operator is asked again."""

    token: str


_TOKENS: dict[str, MessageAction] = {
    "C": MessageAction.COMPLETE,
    "1": MessageAction.COMPLETE,
    "COMPLETE": MessageAction.COMPLETE,
    "A": MessageAction.ABANDON,
    "2": MessageAction.ABANDON,
    "ABANDON": MessageAction.ABANDON,
    "D": MessageAction.DEAD_LETTER,
    "3": MessageAction.DEAD_LETTER,
    "DEADLETTER": MessageAction.DEAD_LETTER,
    "DEAD-LETTER": MessageAction.DEAD_LETTER,
    "S": MessageAction.SKIP,
    "4": MessageAction.SKIP,
    "SKIP": MessageAction.SKIP,
}


def parse_action(token: str | None) -> MessageAction | RetryInput:
    if token is None:
        return RetryInput("")
    action = _TOKENS.get(token.strip().upper())
    if action is None:
        return RetryInput(token)
    return action
