"""Port: messaging publish contract. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Protocol

from pusher.app.domain.envelope import MessageEnvelope
from pusher.app.domain.models import PublishTarget


class MessagePublisher(Protocol):
    """Interface for publishing envelopes to a queue or topic."""

    async def connect(self, target: PublishTarget) -> None: ...
    async def publish(self, envelope: MessageEnvelope) -> None: ...
    async def close(self) -> None: ...

    @property
    def ready(self) -> bool: ...
