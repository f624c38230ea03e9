from __future__ import annotations

import asyncio

import pytest

from reader.app.application.error_handler import ErrorHandler
from reader.app.core.errors import (
    AuthenticationError,
    BrokerError,
    ConfigurationError,
    EntityNotFoundError,
    LeaseLostError,
    ReconnectExhaustedError,
    is_fatal,
)
from reader.app.ports.broker_client import TransportErrorEvent
from tests.fakes import events


def test_transient_transport_error_is_logged_and_loop_continues(log_records):
    handler = ErrorHandler()

    handler.on_transport_error(TransportErrorEvent(BrokerError("connection lost"), "receive", "orders"))

    assert not handler.cancellation.is_set()
    assert handler.fatal_error is None
    handler.raise_if_fatal()
    record = next(r for r in log_records if r["extra"].get("event") == "broker_error")
    assert record["level"].name == "ERROR"
    assert record["extra"]["error_source"] == "receive"
    assert record["extra"]["entity_path"] == "orders"


@pytest.mark.parametrize(
    "error",
    [
        EntityNotFoundError("missing"),
        AuthenticationError("denied"),
        ReconnectExhaustedError("gone"),
    ],
)
def test_fatal_transport_error_cancels_and_is_kept(error):
    handler = ErrorHandler()

    handler.on_transport_error(TransportErrorEvent(error, "receive", "orders"))

    assert handler.cancellation.is_set()
    assert handler.fatal_error is error
    with pytest.raises(type(error)):
        handler.raise_if_fatal()


def test_first_fatal_error_wins():
    handler = ErrorHandler()
    first = EntityNotFoundError("first")

    handler.on_transport_error(TransportErrorEvent(first, "receive", "orders"))
    handler.on_transport_error(TransportErrorEvent(ReconnectExhaustedError("second"), "receive", "orders"))

    assert handler.fatal_error is first


def test_shutdown_request_is_cooperative_and_idempotent(log_records):
    handler = ErrorHandler()

    handler.request_shutdown()
    handler.request_shutdown()

    assert handler.cancellation.is_set()
    assert handler.shutdown_requested is True
    assert handler.fatal_error is None
    assert events(log_records).count("shutdown_requested") == 1
    assert "shutdown_already_requested" in events(log_records)


def test_signal_handlers_install_and_remove():
    async def _run() -> None:
        handler = ErrorHandler()
        handler.install_signal_handlers()
        handler.remove_signal_handlers()

    asyncio.run(_run())


def test_error_classification():
    assert is_fatal(ConfigurationError("no broker url"))
    assert is_fatal(EntityNotFoundError("missing"))
    assert not is_fatal(LeaseLostError("expired"))
    assert not is_fatal(BrokerError("blip"))
    assert not is_fatal(ValueError("other"))
