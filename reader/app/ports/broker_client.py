"""Port: peek-lock broker client. Implementations live in infrastructure.

The core only ever sees these Protocols; connection handling, authentication and
transport retries are the implementation's business.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Protocol

from reader.app.domain.models import DeliveredMessage, EntityDescriptor, ReceiverOptions


@dataclass(frozen=True)
class TransportErrorEvent:
    """Transport failure surfaced asynchronously by the broker client."""

    error: BaseException
    error_source: str
    entity_path: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


TransportErrorListener = Callable[[TransportErrorEvent], None]


class ReceiveStream(Protocol):
    """Deliveries from one entity. Settlement happens on the stream that issued the lease."""

    async def next(self) -> DeliveredMessage:
        """Suspend until a message is delivered. Cancelling the awaiting task is safe."""
        ...

    async def acknowledge(self, message: DeliveredMessage) -> None: ...

    async def requeue(self, message: DeliveredMessage) -> None: ...

    async def dead_letter(self, message: DeliveredMessage, reason: str, description: str) -> None: ...

    async def renew_lease(self, message: DeliveredMessage) -> None: ...

    async def close(self) -> None: ...


class BrokerClient(Protocol):
    async def connect(self) -> None: ...

    async def open_receiver(
        self,
        entity: EntityDescriptor,
        options: ReceiverOptions,
    ) -> ReceiveStream: ...

    def add_error_listener(self, listener: TransportErrorListener) -> None: ...

    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        ...
