"""Wire envelope for test messages.

JSON body fields: content, timestamp (ISO-8601 UTC), source, messageId, and the
optional category / priority / metadata. The broker message id echoes messageId.
"""
from __future__ import annotations

import json
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

RANDOM_TEXTS = (
    "Hello from the pusher!",
    "Processing batch data...",
    "System health check completed",
    "Random message generated at {0}",
    "Service bus test message",
    "Automated workflow triggered",
    "Data synchronization in progress",
    "Background job executed successfully",
    "Timer run completed smoothly",
    "Broker integration working",
)

PRIORITIES = ("low", "normal", "high")


def random_content(now: datetime | None = None, rng: random.Random | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    text = (rng or random).choice(RANDOM_TEXTS)
    return text.format(now.strftime("%Y-%m-%d %H:%M:%S"))


@dataclass(frozen=True)
class MessageEnvelope:
    content: str
    timestamp: datetime
    source: str
    message_id: str
    message_type: str = "RandomText"
    category: str | None = None
    priority: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "messageId": self.message_id,
        }
        if self.category is not None:
            payload["category"] = self.category
        if self.priority is not None:
            payload["priority"] = self.priority
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode()

    def application_properties(self) -> dict[str, Any]:
        """Headers attached for consumers; read-only on the receiving side."""
        props: dict[str, Any] = {
            "Source": self.source,
            "ExecutionTime": self.timestamp.isoformat(),
            "MessageType": self.message_type,
        }
        if self.category is not None:
            props["Category"] = self.category
        if self.priority is not None:
            props["Priority"] = self.priority
        return props


def build_envelope(
    content: str,
    *,
    source: str,
    message_type: str = "RandomText",
    category: str | None = None,
    priority: str | None = None,
    metadata: dict[str, Any] | None = None,
    message_id: str | None = None,
    now: datetime | None = None,
) -> MessageEnvelope:
    if priority is not None and priority not in PRIORITIES:
        raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
    return MessageEnvelope(
        content=content,
        timestamp=now or datetime.now(timezone.utc),
        source=source,
        message_id=message_id or str(uuid.uuid4()),
        message_type=message_type,
        category=category,
        priority=priority,
        metadata=dict(metadata or {}),
    )
