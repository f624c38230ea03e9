import json
import random
from datetime import datetime, timezone

import pytest

from pusher.app.domain.envelope import RANDOM_TEXTS, build_envelope, random_content

NOW = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


def test_envelope_body_has_expected_fields():
    envelope = build_envelope("hello", source="pusher", message_id="abc", now=NOW)

    body = json.loads(envelope.to_json())

    assert body == {
        "content": "hello",
        "timestamp": "2024-05-01T12:30:00+00:00",
        "source": "pusher",
        "messageId": "abc",
    }


def test_optional_fields_are_included_when_set():
    envelope = build_envelope(
        "hello",
        source="pusher",
        category="billing",
        priority="high",
        metadata={"sequence": 1},
        now=NOW,
    )

    body = envelope.to_dict()

    assert body["category"] == "billing"
    assert body["priority"] == "high"
    assert body["metadata"] == {"sequence": 1}
    assert envelope.application_properties() == {
        "Source": "pusher",
        "ExecutionTime": "2024-05-01T12:30:00+00:00",
        "MessageType": "RandomText",
        "Category": "billing",
        "Priority": "high",
    }


def test_message_id_is_generated_when_missing():
    first = build_envelope("a", source="pusher")
    second = build_envelope("a", source="pusher")

    assert first.message_id and second.message_id
    assert first.message_id != second.message_id


def test_unknown_priority_is_rejected():
    with pytest.raises(ValueError):
        build_envelope("a", source="pusher", priority="urgent")


def test_random_content_fills_in_timestamp():
    rng = random.Random(0)
    text = random_content(NOW, rng)

    assert "{0}" not in text
    assert any(text == t.format("2024-05-01 12:30:00") for t in RANDOM_TEXTS)
