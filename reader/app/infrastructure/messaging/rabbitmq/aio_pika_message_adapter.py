"""Adapter: turn an aio_pika.IncomingMessage into a DeliveredMessage."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from aio_pika.abc import AbstractIncomingMessage

from reader.app.domain.models import DeliveredMessage, Scalar
from reader.app.infrastructure.messaging.rabbitmq.constants import (
    BROKER_HEADER_PREFIX,
    DELIVERY_COUNT_HEADER,
)


def _scalar(value: Any) -> Scalar:
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value).hex()
    if value is None or isinstance(value, (str, int, float, bool, datetime)):
        return value
    return str(value)


def delivery_count(raw: AbstractIncomingMessage) -> int:
    headers = raw.headers or {}
    prior = headers.get(DELIVERY_COUNT_HEADER)
    if prior is not None:
        try:
            return int(prior) + 1
        except (TypeError, ValueError):
            pass
    return 2 if raw.redelivered else 1


def application_properties(raw: AbstractIncomingMessage) -> dict[str, Scalar]:
    return {
        str(key): _scalar(value)
        for key, value in (raw.headers or {}).items()
        if not str(key).startswith(BROKER_HEADER_PREFIX)
    }


def enqueued_time(raw: AbstractIncomingMessage) -> datetime | None:
    ts = raw.timestamp
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_delivered_message(raw: AbstractIncomingMessage, lock_token: str) -> DeliveredMessage:
    return DeliveredMessage(
        message_id=raw.message_id or f"delivery-{raw.delivery_tag}",
        body=bytes(raw.body),
        lock_token=lock_token,
        delivery_count=delivery_count(raw),
        enqueued_time=enqueued_time(raw),
        content_type=raw.content_type,
        application_properties=application_properties(raw),
    )
