"""Unit tests for message presentation: JSON pretty-printing and raw fallback."""
from __future__ import annotations

import json

import pytest

from reader.app.domain.formatting import format_body, raw_body, render_message
from tests.fakes import make_message

ENVELOPE = {
    "content": "Processing batch data...",
    "timestamp": "2024-05-01T12:30:00+00:00",
    "source": "pusher",
    "messageId": "m1",
    "category": "orders",
    "priority": "high",
    "metadata": {"sequence": 1, "tags": ["a", "b"], "nested": {"ok": True, "n": None}},
}


def test_json_body_is_indented():
    formatted = format_body(json.dumps(ENVELOPE, separators=(",", ":")).encode())

    assert formatted.startswith("{\n  ")
    assert '  "content": "Processing batch data..."' in formatted


@pytest.mark.parametrize(
    "value",
    [ENVELOPE, [1, 2, {"a": "b"}], "plain string", 42, None, {"unicode": "Zpráva přijata"}],
)
def test_formatted_json_reparses_to_same_value(value):
    formatted = format_body(json.dumps(value, ensure_ascii=False).encode("utf-8"))

    assert json.loads(formatted) == value
    assert format_body(formatted.encode("utf-8")) == formatted


@pytest.mark.parametrize(
    "body",
    [
        b"not json at all",
        b"{\"content\": broken",
        b"",
        b"\xff\xfe\x00binary\x80",
        "Zpráva {neúplná".encode("utf-8"),
    ],
)
def test_malformed_body_is_shown_verbatim(body):
    shown = format_body(body)

    assert shown == raw_body(body)
    assert shown.encode("utf-8", "surrogateescape") == body


def test_too_deeply_nested_json_is_shown_verbatim():
    body = b"[" * 100000 + b"]" * 100000

    assert format_body(body) == raw_body(body)


def test_render_keeps_details_for_too_deeply_nested_json():
    message = make_message("m1", b"[" * 100000 + b"]" * 100000, delivery_count=4)

    rendered = render_message(message)

    assert "Message ID: m1" in rendered
    assert "Delivery Count: 4" in rendered


def test_render_shows_details_and_unmodified_delivery_count():
    message = make_message(
        "m1",
        json.dumps(ENVELOPE).encode(),
        delivery_count=3,
        properties={"Source": "TimerFunction", "MessageType": "RandomText"},
    )

    rendered = render_message(message)

    assert "Message ID: m1" in rendered
    assert "Delivery Count: 3" in rendered
    assert "Enqueued Time: 2024-05-01 12:30:00 UTC" in rendered
    assert "Content Type: application/json" in rendered
    assert rendered.index("    Source: TimerFunction") < rendered.index("    MessageType: RandomText")
    assert '"priority": "high"' in rendered


def test_render_without_properties_omits_properties_section():
    rendered = render_message(make_message(body=b"raw text"))

    assert "Message Properties:" not in rendered
    assert "raw text" in rendered


class _Unprintable:
    def __str__(self) -> str:
        raise RuntimeError("cannot render")


def test_render_falls_back_to_raw_body_when_a_field_fails():
    message = make_message(body=b'{"a": 1}', properties={"bad": _Unprintable()})

    assert render_message(message) == '{"a": 1}'
