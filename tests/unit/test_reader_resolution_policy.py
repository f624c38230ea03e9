"""Unit tests for ResolutionPolicy: one broker call per operator decision, fail-safe requeue."""
from __future__ import annotations

import asyncio

import pytest

from reader.app.application.resolution_policy import ACTION_PROMPT, INVALID_CHOICE, ResolutionPolicy
from reader.app.core.errors import LeaseLostError, OperatorAbort
from reader.app.domain.models import (
    DEAD_LETTER_DESCRIPTION,
    DEAD_LETTER_REASON,
    Acknowledged,
    DeadLettered,
    Requeued,
    Skipped,
)
from tests.fakes import FakeReceiveStream, ScriptedConsole, events, make_message


def _resolve(stream, console, message):
    policy = ResolutionPolicy(stream, console)
    return asyncio.run(policy.resolve(message))


def test_complete_acknowledges_exactly_once():
    """Operator answers C for m1: one acknowledge, nothing else."""
    stream = FakeReceiveStream()
    console = ScriptedConsole(["C"])

    outcome = _resolve(stream, console, make_message("m1"))

    assert outcome == Acknowledged("m1")
    assert stream.calls == [("acknowledge", "m1")]
    assert outcome.terminal is True


@pytest.mark.parametrize(
    ("answer", "expected_outcome", "expected_call"),
    [
        ("c", Acknowledged("m1"), "acknowledge"),
        ("2", Requeued("m1"), "requeue"),
        ("a", Requeued("m1"), "requeue"),
        ("3", DeadLettered("m1"), "dead_letter"),
    ],
)
def test_each_action_makes_its_broker_call(answer, expected_outcome, expected_call):
    stream = FakeReceiveStream()

    outcome = _resolve(stream, ScriptedConsole([answer]), make_message("m1"))

    assert outcome == expected_outcome
    assert stream.names() == [expected_call]


def test_invalid_input_reprompts_then_dead_letters():
    """Operator answers x then D: asked twice, dead_letter with the fixed reason/description."""
    stream = FakeReceiveStream()
    console = ScriptedConsole(["x", "D"])

    outcome = _resolve(stream, console, make_message("m1"))

    assert console.prompts == [ACTION_PROMPT, ACTION_PROMPT]
    assert console.notices.count(INVALID_CHOICE) == 1
    assert stream.calls == [("dead_letter", "m1", DEAD_LETTER_REASON, DEAD_LETTER_DESCRIPTION)]
    assert DEAD_LETTER_REASON == "User requested"
    assert DEAD_LETTER_DESCRIPTION == "Message moved to dead letter queue by user choice"
    assert outcome == DeadLettered("m1", "User requested", "Message moved to dead letter queue by user choice")


def test_invalid_input_is_not_logged_as_error(log_records):
    _resolve(FakeReceiveStream(), ScriptedConsole(["?", "nope", "s"]), make_message("m1"))

    assert [r for r in log_records if r["level"].name == "ERROR"] == []


def test_skip_leaves_lease_pending():
    stream = FakeReceiveStream()

    outcome = _resolve(stream, ScriptedConsole(["S"]), make_message("m1"))

    assert outcome == Skipped("m1")
    assert outcome.terminal is False
    assert stream.calls == []


def test_displayed_delivery_count_is_unmodified():
    console = ScriptedConsole(["4"])
    message = make_message("m1", delivery_count=3)

    _resolve(FakeReceiveStream(), console, message)

    assert "Delivery Count: 3" in console.shown[0]
    assert message.delivery_count == 3


def test_malformed_body_is_presented_raw_and_resolution_continues():
    console = ScriptedConsole(["C"])
    stream = FakeReceiveStream()

    outcome = _resolve(stream, console, make_message("m1", body=b"{not json"))

    assert "{not json" in console.shown[0]
    assert outcome == Acknowledged("m1")


def test_broker_call_failure_is_logged_and_not_retried(log_records):
    """Chosen action fails (lease lost): outcome marked failed, no fallback call."""
    stream = FakeReceiveStream(fail_on={"acknowledge": LeaseLostError("lock expired")})

    outcome = _resolve(stream, ScriptedConsole(["C"]), make_message("m1"))

    assert outcome == Acknowledged("m1", failed=True)
    assert stream.names() == ["acknowledge"]
    assert "message_action_failed" in events(log_records)


def test_dead_letter_failure_does_not_fall_back_to_requeue():
    stream = FakeReceiveStream(fail_on={"dead_letter": RuntimeError("channel closed")})

    outcome = _resolve(stream, ScriptedConsole(["D"]), make_message("m1"))

    assert outcome == DeadLettered("m1", failed=True)
    assert stream.names() == ["dead_letter"]


class _BrokenConsole(ScriptedConsole):
    async def read_line(self, prompt: str) -> str:
        raise RuntimeError("terminal went away")


def test_unhandled_error_while_deciding_requeues(log_records):
    stream = FakeReceiveStream()

    outcome = _resolve(stream, _BrokenConsole(), make_message("m1"))

    assert outcome == Requeued("m1")
    assert stream.names() == ["requeue"]
    assert "acknowledge" not in stream.names()
    assert "message_processing_failed" in events(log_records)


def test_fail_safe_requeue_failure_is_reported_not_raised():
    stream = FakeReceiveStream(fail_on={"requeue": RuntimeError("connection lost")})

    outcome = _resolve(stream, _BrokenConsole(), make_message("m1"))

    assert outcome == Requeued("m1", failed=True)
    assert stream.names() == ["requeue"]


def test_operator_input_closed_requeues_then_aborts():
    stream = FakeReceiveStream()
    policy = ResolutionPolicy(stream, ScriptedConsole([]))

    with pytest.raises(OperatorAbort):
        asyncio.run(policy.resolve(make_message("m1")))

    assert stream.names() == ["requeue"]


def test_invalid_input_delay_is_applied(monkeypatch):
    delays: list[float] = []

    async def _fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr("reader.app.application.resolution_policy.asyncio.sleep", _fake_sleep)
    policy = ResolutionPolicy(FakeReceiveStream(), ScriptedConsole(["bad", "C"]), invalid_input_delay_seconds=1.0)

    asyncio.run(policy.resolve(make_message("m1")))

    assert delays == [1.0]
