"""
RabbitMQ publisher: connection lifecycle and publish with confirm.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> CONNECTED -> CONFIRM_ENABLED ->
  ENTITY_RESOLVED -> READY.
  On shutdown: READY -> CLOSING (wait in-flight) -> close channel/connection -> CLOSED.
Queues publish through the default exchange; topics publish to their fanout exchange.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection
from aio_pika.exceptions import ChannelNotFoundEntity
from loguru import logger

from pusher.app.core import SERVICE_NAME
from pusher.app.core.backoff import exponential_backoff
from pusher.app.core.errors import BrokerConnectionError, TargetNotFoundError
from pusher.app.domain.envelope import MessageEnvelope
from pusher.app.domain.models import PublishTarget, TargetKind
from pusher.app.infrastructure.messaging.rabbitmq.constants import PublisherState


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class RabbitMQPublisher:
    """MessagePublisher implementation"""

    def __init__(self, settings: Any) -> None:
        self._settings = settings
        self._state = PublisherState.DISCONNECTED
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._routing_key = ""
        self._target: PublishTarget | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> PublisherState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state == PublisherState.READY

    def _set_state(self, state: PublisherState) -> None:
        self._state = state

    async def connect(self, target: PublishTarget) -> None:
        self._target = target
        self._set_state(PublisherState.CONNECTING)
        last_error: Exception | None = None
        attempt = 0
        async for delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            attempt += 1
            _log("rmq_connect_attempt", attempt=attempt, delay=delay)
            try:
                self._connection = await aio_pika.connect_robust(self._settings.amqp_url())
                break
            except Exception as e:
                last_error = e
                logger.warning("rmq connect failed: {}", e)
        else:
            _log("rmq_connect_failed", attempts=self._settings.max_connection_attempts)
            self._set_state(PublisherState.DISCONNECTED)
            raise BrokerConnectionError(f"could not connect to broker: {last_error}") from last_error
        self._set_state(PublisherState.CONNECTED)
        _log("rmq_connected")
        await self._open_channel_and_resolve(target)

    async def _open_channel_and_resolve(self, target: PublishTarget) -> None:
        if not self._connection:
            return
        self._channel = await self._connection.channel(publisher_confirms=True)
        self._set_state(PublisherState.CONFIRM_ENABLED)
        try:
            if target.kind == TargetKind.TOPIC:
                self._exchange = await self._channel.get_exchange(target.name, ensure=True)
                self._routing_key = ""
            else:
                await self._channel.get_queue(target.name, ensure=True)
                self._exchange = self._channel.default_exchange
                self._routing_key = target.name
        except ChannelNotFoundEntity as e:
            _log("target_not_found", target=target.name)
            await self._close_channel_and_connection()
            self._set_state(PublisherState.DISCONNECTED)
            raise TargetNotFoundError(
                f"{target.kind.value} not found: {target.name}", target=target.name
            ) from e
        self._set_state(PublisherState.ENTITY_RESOLVED)
        self._set_state(PublisherState.READY)

    async def _close_channel_and_connection(self) -> None:
        self._exchange = None
        if self._channel:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None

    async def publish(self, envelope: MessageEnvelope) -> None:
        if self._state != PublisherState.READY:
            _log("publish_rejected", reason="publisher_not_ready")
            raise RuntimeError("publisher_not_ready")
        start = time.perf_counter()
        async with self._lock:
            if self._exchange is None:
                _log("publish_failed", reason="connection_lost")
                raise RuntimeError("connection_lost")
            msg = Message(
                envelope.to_json(),
                delivery_mode=DeliveryMode.PERSISTENT,
                content_type="application/json",
                message_id=envelope.message_id,
                timestamp=envelope.timestamp,
                headers=envelope.application_properties(),
            )
            try:
                await self._exchange.publish(
                    msg,
                    routing_key=self._routing_key,
                    timeout=self._settings.publish_timeout_seconds,
                )
            except Exception as e:
                _log("publish_failed", message_id=envelope.message_id, error=str(e))
                raise
        latency_ms = (time.perf_counter() - start) * 1000
        _log(
            "publish_success",
            message_id=envelope.message_id,
            target=self._target.name if self._target else "",
            latency_ms=round(latency_ms, 2),
        )

    async def close(self) -> None:
        self._set_state(PublisherState.CLOSING)
        _log("publisher_shutdown")
        async with self._lock:
            await self._close_channel_and_connection()
        self._set_state(PublisherState.CLOSED)
