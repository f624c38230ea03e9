"""Where the pusher sends: a queue by name, or a topic's exchange."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pusher.app.core.errors import ConfigurationError


class TargetKind(str, Enum):
    QUEUE = "queue"
    TOPIC = "topic"


@dataclass(frozen=True)
class PublishTarget:
    kind: TargetKind
    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError(f"{self.kind.value} name is required")

    @staticmethod
    def queue(name: str) -> "PublishTarget":
        return PublishTarget(TargetKind.QUEUE, name.strip())

    @staticmethod
    def topic(name: str) -> "PublishTarget":
        return PublishTarget(TargetKind.TOPIC, name.strip())
