"""
RabbitMQ broker client: connection lifecycle and receiver creation.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> CONNECTED -> READY.
  On broker disconnect: READY -> RECONNECTING. aio_pika's robust connection
  reconnects on its own; we watch its `connected` event with the same backoff
  schedule and report a fatal ReconnectExhaustedError to listeners if it is not
  set again within max_connection_attempts checks.
  On shutdown: CLOSING -> close receivers, then connection -> CLOSED.

Entities are resolved passively: this client never creates queues, exchanges or
subscriptions, only the dead-letter queue that stands in for the broker-owned one.
"""
from __future__ import annotations

import asyncio
from typing import Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractQueue, AbstractRobustConnection
from aio_pika.exceptions import AuthenticationError as AmqpAuthenticationError
from aio_pika.exceptions import ChannelNotFoundEntity, ProbableAuthenticationError
from loguru import logger

from reader.app.config.settings import Settings
from reader.app.core import SERVICE_NAME
from reader.app.core.backoff import exponential_backoff
from reader.app.core.errors import (
    AuthenticationError,
    BrokerConnectionError,
    BrokerError,
    EntityNotFoundError,
    ReconnectExhaustedError,
)
from reader.app.domain.models import EntityDescriptor, EntityKind, ReceiverOptions
from reader.app.infrastructure.messaging.rabbitmq.constants import ConsumerState
from reader.app.infrastructure.messaging.rabbitmq.rabbitmq_receive_stream import RabbitMQReceiveStream
from reader.app.ports.broker_client import TransportErrorEvent, TransportErrorListener


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def subscription_queue_name(entity: EntityDescriptor) -> str:
    if entity.kind == EntityKind.TOPIC:
        return f"{entity.name}.{entity.subscription}"
    return entity.name


def dead_letter_queue_name(entity: EntityDescriptor, suffix: str) -> str:
    return f"{subscription_queue_name(entity)}.{suffix}"


class RabbitMQBrokerClient:
    """BrokerClient implementation"""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._state = ConsumerState.DISCONNECTED
        self._connection: AbstractRobustConnection | None = None
        self._receivers: list[RabbitMQReceiveStream] = []
        self._listeners: list[TransportErrorListener] = []
        self._watch_task: asyncio.Task[None] | None = None
        self._closing = False
        self._entity_path = ""

    @property
    def state(self) -> ConsumerState:
        return self._state

    def _set_state(self, state: ConsumerState) -> None:
        self._state = state

    def add_error_listener(self, listener: TransportErrorListener) -> None:
        self._listeners.append(listener)

    def _emit(self, error: BaseException, error_source: str) -> None:
        event = TransportErrorEvent(error=error, error_source=error_source, entity_path=self._entity_path)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.exception("error listener failed: {}", exc)

    async def connect(self) -> None:
        self._set_state(ConsumerState.CONNECTING)
        _log("rmq_connecting")
        last_error: Exception | None = None
        async for attempt, delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            _log("rmq_connect_attempt", attempt=attempt, delay=delay)
            try:
                self._connection = await aio_pika.connect_robust(self._settings.amqp_url())
                break
            except (ProbableAuthenticationError, AmqpAuthenticationError) as e:
                self._set_state(ConsumerState.DISCONNECTED)
                _log("rmq_auth_failed", attempt=attempt)
                raise AuthenticationError(f"broker rejected credentials: {e}") from e
            except Exception as e:
                last_error = e
                logger.warning("rmq connect failed: {}", e)
        else:
            _log("rmq_connect_failed", attempts=self._settings.max_connection_attempts)
            self._set_state(ConsumerState.DISCONNECTED)
            raise BrokerConnectionError(f"could not connect to broker: {last_error}") from last_error

        self._register_callbacks(self._connection)
        self._set_state(ConsumerState.CONNECTED)
        _log("rmq_connected")
        self._set_state(ConsumerState.READY)

    def _register_callbacks(self, connection: AbstractRobustConnection) -> None:
        close_callbacks = getattr(connection, "close_callbacks", None)
        if close_callbacks is not None and callable(getattr(close_callbacks, "add", None)):
            close_callbacks.add(self._on_connection_closed)
        reconnect_callbacks = getattr(connection, "reconnect_callbacks", None)
        if reconnect_callbacks is not None and callable(getattr(reconnect_callbacks, "add", None)):
            reconnect_callbacks.add(self._on_reconnected)

    def _on_connection_closed(self, *args: Any, **kwargs: Any) -> None:
        if self._closing:
            return
        exc = args[1] if len(args) > 1 else kwargs.get("exc")
        self._set_state(ConsumerState.RECONNECTING)
        _log("broker_disconnect_detected")
        self._emit(BrokerError(f"connection lost: {exc}", entity_path=self._entity_path), "receive")
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.ensure_future(self._watch_reconnect())

    def _on_reconnected(self, *args: Any, **kwargs: Any) -> None:
        self._set_state(ConsumerState.READY)
        _log("rmq_reconnected")

    def _is_connected(self) -> bool:
        # `connected` is cleared on loss and set again after a reconnect; is_closed is not
        return self._connection is not None and self._connection.connected.is_set()

    async def _watch_reconnect(self) -> None:
        async for attempt, _ in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            if self._closing:
                return
            _log("rmq_reconnect_wait", attempt=attempt)
            if self._is_connected():
                self._set_state(ConsumerState.READY)
                return
        if self._closing:
            return
        _log("rmq_reconnect_exhausted", max_attempts=self._settings.max_connection_attempts)
        self._set_state(ConsumerState.DISCONNECTED)
        self._emit(
            ReconnectExhaustedError("broker connection could not be re-established", entity_path=self._entity_path),
            "receive",
        )

    async def _resolve_queue(self, channel: AbstractChannel, entity: EntityDescriptor) -> AbstractQueue:
        try:
            if entity.kind == EntityKind.TOPIC:
                await channel.get_exchange(entity.name, ensure=True)
            return await channel.get_queue(subscription_queue_name(entity), ensure=True)
        except ChannelNotFoundEntity as e:
            _log("entity_not_found", entity_path=entity.path)
            raise EntityNotFoundError(f"entity not found: {entity.path}", entity_path=entity.path) from e

    async def open_receiver(
        self,
        entity: EntityDescriptor,
        options: ReceiverOptions,
    ) -> RabbitMQReceiveStream:
        if options.max_concurrent != 1 or options.auto_complete:
            raise ValueError("only max_concurrent=1 with auto_complete disabled is supported")
        if self._connection is None or self._state not in (ConsumerState.READY, ConsumerState.RECONNECTING):
            raise RuntimeError("broker client not connected")

        self._entity_path = entity.path
        channel = await self._connection.channel()
        try:
            queue = await self._resolve_queue(channel, entity)
            dlq_name = dead_letter_queue_name(entity, self._settings.dead_letter_suffix)
            await channel.declare_queue(dlq_name, durable=True)
        except Exception:
            try:
                await channel.close()
            except Exception as close_exc:
                logger.warning("channel close after failed open: {}", close_exc)
            raise

        stream = RabbitMQReceiveStream(
            entity=entity,
            channel=channel,
            queue=queue,
            dead_letter_queue_name=dlq_name,
            lock_duration_seconds=self._settings.lock_duration_seconds,
            poll_interval_seconds=self._settings.receive_poll_interval_seconds,
        )
        self._receivers.append(stream)
        _log("receiver_opened", entity_path=entity.path, queue=queue.name, dead_letter_queue=dlq_name)
        return stream

    async def close(self) -> None:
        if self._state == ConsumerState.CLOSED:
            return
        self._closing = True
        self._set_state(ConsumerState.CLOSING)
        _log("broker_client_shutdown")
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
        receivers, self._receivers = self._receivers, []
        for receiver in receivers:
            try:
                await receiver.close()
            except Exception as e:
                logger.warning("receiver close failed: {}", e)
        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None
        self._set_state(ConsumerState.CLOSED)
