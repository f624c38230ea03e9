"""Transport error and operator interrupt handling for the reader."""
from __future__ import annotations

import asyncio
import signal
from typing import Any

from loguru import logger

from reader.app.core import SERVICE_NAME
from reader.app.core.errors import FATAL_BROKER_ERRORS
from reader.app.ports.broker_client import TransportErrorEvent


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class ErrorHandler:
    """
    Observes broker transport errors and the operator interrupt.

    Transient transport errors are logged and otherwise ignored; the client retries
    them. Fatal ones (missing entity, bad credentials, reconnect exhausted) are kept
    and cancel the loop, which re-raises them once the receiver is torn down.
    Interrupts only set the cancellation event; a resolution in progress finishes.
    """

    def __init__(self, cancellation: asyncio.Event | None = None) -> None:
        self._cancellation = cancellation or asyncio.Event()
        self._fatal_error: BaseException | None = None
        self._shutdown_requested = False

    @property
    def cancellation(self) -> asyncio.Event:
        return self._cancellation

    @property
    def fatal_error(self) -> BaseException | None:
        return self._fatal_error

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def on_transport_error(self, event: TransportErrorEvent) -> None:
        logger.bind(
            service_name=SERVICE_NAME,
            event="broker_error",
            error=str(event.error),
            error_type=type(event.error).__name__,
            error_source=event.error_source,
            entity_path=event.entity_path,
        ).error("broker error from {} on {}: {}", event.error_source, event.entity_path, event.error)

        if isinstance(event.error, FATAL_BROKER_ERRORS):
            if self._fatal_error is None:
                self._fatal_error = event.error
            _log("broker_error_fatal", entity_path=event.entity_path)
            self._cancellation.set()

    def raise_if_fatal(self) -> None:
        if self._fatal_error is not None:
            raise self._fatal_error

    def request_shutdown(self) -> None:
        if self._shutdown_requested:
            _log("shutdown_already_requested")
            return
        self._shutdown_requested = True
        _log("shutdown_requested")
        self._cancellation.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                pass

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
