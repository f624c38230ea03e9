"""Operator-facing rendering of a delivered message.

Nothing in here raises: a body that is not JSON is shown as-is, and a field that
fails to render drops the whole view back to the raw body.
"""
from __future__ import annotations

import json

from loguru import logger

from reader.app.domain.models import DeliveredMessage

RULE_WIDTH = 80
BODY_RULE_WIDTH = 40
ENQUEUED_TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


def raw_body(body: bytes) -> str:
    """Decode without loss: `raw_body(b).encode("utf-8", "surrogateescape") == b`."""
    return bytes(body).decode("utf-8", errors="surrogateescape")


def format_body(body: bytes) -> str:
    try:
        value = json.loads(bytes(body).decode("utf-8"))
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (UnicodeDecodeError, ValueError, RecursionError):
        return raw_body(body)


def _format_enqueued_time(message: DeliveredMessage) -> str:
    if message.enqueued_time is None:
        return "-"
    return message.enqueued_time.strftime(ENQUEUED_TIME_FORMAT)


def render_message(message: DeliveredMessage) -> str:
    try:
        lines = [
            "=" * RULE_WIDTH,
            "NEW MESSAGE RECEIVED",
            f"Message ID: {message.message_id}",
            f"Enqueued Time: {_format_enqueued_time(message)}",
            f"Delivery Count: {message.delivery_count}",
            f"Content Type: {message.content_type or '-'}",
        ]
        if message.application_properties:
            lines.append("Message Properties:")
            for key, value in message.application_properties.items():
                lines.append(f"    {key}: {value}")
        lines.extend(
            [
                "",
                "MESSAGE CONTENT:",
                "-" * BODY_RULE_WIDTH,
                format_body(message.body),
                "-" * BODY_RULE_WIDTH,
            ]
        )
        return "\n".join(lines)
    except Exception as exc:
        logger.warning("message rendering failed, showing raw body: {}", exc)
        return raw_body(getattr(message, "body", b""))
