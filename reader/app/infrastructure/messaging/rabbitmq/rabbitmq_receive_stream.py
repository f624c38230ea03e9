"""
RabbitMQ receive stream: peek-lock deliveries from one queue.

Deliveries are pulled with basic.get and left unacknowledged; that open delivery
is the lease. Leases:
  - the delivery currently handed to the caller does not expire;
  - once the caller asks for the next message, an unsettled previous delivery
    (skipped, or its settlement failed) keeps its lease for lock_duration more,
    then is released with nack(requeue=True) so the broker redelivers it;
  - renew_lease pushes the deadline forward by lock_duration;
  - a background task checks deadlines every poll interval while any lease is
    counting down, so expiry does not wait for the next call to next();
  - close() releases every lease still held.
basic.get is not bound by prefetch, so held leases never block new deliveries.
Failures of basic.get surface as BrokerError carrying the entity path.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue
from loguru import logger

from reader.app.core import SERVICE_NAME
from reader.app.core.errors import BrokerError, LeaseLostError
from reader.app.domain.models import DeliveredMessage, EntityDescriptor
from reader.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import to_delivered_message
from reader.app.infrastructure.messaging.rabbitmq.constants import (
    DEAD_LETTER_DESCRIPTION_HEADER,
    DEAD_LETTER_REASON_HEADER,
    DEAD_LETTER_SOURCE_HEADER,
)


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


@dataclass
class _Lease:
    raw: AbstractIncomingMessage
    message_id: str
    locked_until: float | None = None  # None while the delivery is in flight


class RabbitMQReceiveStream:
    """ReceiveStream implementation over one aio_pika channel."""

    def __init__(
        self,
        *,
        entity: EntityDescriptor,
        channel: AbstractChannel,
        queue: AbstractQueue,
        dead_letter_queue_name: str,
        lock_duration_seconds: float,
        poll_interval_seconds: float,
    ) -> None:
        self._entity = entity
        self._channel = channel
        self._queue = queue
        self._dead_letter_queue_name = dead_letter_queue_name
        self._lock_duration = float(lock_duration_seconds)
        self._poll_interval = float(poll_interval_seconds)
        self._leases: dict[str, _Lease] = {}
        self._reaper: asyncio.Future[None] | None = None
        self._closed = False

    @property
    def entity(self) -> EntityDescriptor:
        return self._entity

    @property
    def outstanding_leases(self) -> int:
        return len(self._leases)

    @property
    def closed(self) -> bool:
        return self._closed

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    async def next(self) -> DeliveredMessage:
        self._hand_back_in_flight()
        while True:
            if self._closed:
                raise RuntimeError("receive stream is closed")
            await self.release_expired_leases()
            try:
                raw = await self._queue.get(no_ack=False, fail=False)
            except Exception as e:
                raise BrokerError(f"receive failed: {e!r}", entity_path=self._entity.path) from e
            if raw is not None:
                lock_token = uuid.uuid4().hex
                message = to_delivered_message(raw, lock_token)
                self._leases[lock_token] = _Lease(raw=raw, message_id=message.message_id)
                return message
            await asyncio.sleep(self._poll_interval)

    def _hand_back_in_flight(self) -> None:
        now = self._now()
        for lease in self._leases.values():
            if lease.locked_until is None:
                lease.locked_until = now + self._lock_duration
        self._ensure_reaper()

    def _ensure_reaper(self) -> None:
        if self._closed or not any(lease.locked_until is not None for lease in self._leases.values()):
            return
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.ensure_future(self._reap_expired_leases())

    async def _reap_expired_leases(self) -> None:
        # runs while the operator sits at a prompt, when nothing calls next()
        while not self._closed and any(lease.locked_until is not None for lease in self._leases.values()):
            await asyncio.sleep(self._poll_interval)
            await self.release_expired_leases()

    async def release_expired_leases(self) -> int:
        now = self._now()
        expired = [
            token
            for token, lease in self._leases.items()
            if lease.locked_until is not None and lease.locked_until <= now
        ]
        leases = [self._leases.pop(token) for token in expired]
        for lease in leases:
            await self._release(lease, reason="lease_expired")
        return len(leases)

    async def _release(self, lease: _Lease, *, reason: str) -> None:
        try:
            await lease.raw.nack(requeue=True)
            _log("lease_released", message_id=lease.message_id, reason=reason, entity_path=self._entity.path)
        except Exception as exc:
            logger.warning("lease release failed for message {}: {}", lease.message_id, exc)

    def _held_lease(self, message: DeliveredMessage) -> _Lease:
        lease = self._leases.get(message.lock_token)
        if lease is None:
            raise LeaseLostError(
                f"lease for message {message.message_id} is no longer held",
                entity_path=self._entity.path,
            )
        if lease.locked_until is not None and lease.locked_until <= self._now():
            raise LeaseLostError(
                f"lease for message {message.message_id} expired",
                entity_path=self._entity.path,
            )
        return lease

    def _take_lease(self, message: DeliveredMessage) -> _Lease:
        """Remove the lease before settling so the reaper cannot release it mid-call."""
        lease = self._held_lease(message)
        del self._leases[message.lock_token]
        return lease

    def _restore_lease(self, message: DeliveredMessage, lease: _Lease) -> None:
        if not self._closed:
            self._leases[message.lock_token] = lease
            self._ensure_reaper()

    async def acknowledge(self, message: DeliveredMessage) -> None:
        lease = self._take_lease(message)
        try:
            await lease.raw.ack()
        except Exception:
            self._restore_lease(message, lease)
            raise

    async def requeue(self, message: DeliveredMessage) -> None:
        lease = self._take_lease(message)
        try:
            await lease.raw.nack(requeue=True)
        except Exception:
            self._restore_lease(message, lease)
            raise

    async def dead_letter(self, message: DeliveredMessage, reason: str, description: str) -> None:
        lease = self._take_lease(message)
        raw = lease.raw
        headers = dict(raw.headers or {})
        headers[DEAD_LETTER_REASON_HEADER] = reason
        headers[DEAD_LETTER_DESCRIPTION_HEADER] = description
        headers[DEAD_LETTER_SOURCE_HEADER] = self._entity.path
        try:
            await self._channel.default_exchange.publish(
                aio_pika.Message(
                    bytes(raw.body),
                    headers=headers,
                    content_type=raw.content_type,
                    message_id=raw.message_id,
                    timestamp=raw.timestamp,
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                ),
                routing_key=self._dead_letter_queue_name,
            )
            await raw.ack()
        except Exception:
            self._restore_lease(message, lease)
            raise

    async def renew_lease(self, message: DeliveredMessage) -> None:
        lease = self._held_lease(message)
        lease.locked_until = self._now() + self._lock_duration
        self._ensure_reaper()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reaper is not None and not self._reaper.done():
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
        leases, self._leases = list(self._leases.values()), {}
        for lease in leases:
            await self._release(lease, reason="receiver_closed")
        try:
            await self._channel.close()
        except Exception as e:
            logger.warning("receiver channel close failed: {}", e)
        _log("receiver_closed", entity_path=self._entity.path, released_leases=len(leases))
