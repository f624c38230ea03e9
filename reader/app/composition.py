"""Reader composition root: build and lifecycle-manage concrete dependencies.

The broker client is created and connected once, and closed once on every exit
path; the processing loop receives it explicitly.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from reader.app.application.error_handler import ErrorHandler
from reader.app.application.processing_loop import LoopStats, SequentialProcessingLoop
from reader.app.config.settings import Settings
from reader.app.core import SERVICE_NAME
from reader.app.domain.models import EntityDescriptor
from reader.app.infrastructure.messaging.factory import create_broker_client
from reader.app.ports.broker_client import BrokerClient
from reader.app.ports.operator_console import OperatorConsole


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class ReaderDependencies:
    """Holds wired reader dependencies and their lifecycle."""

    def __init__(
        self,
        *,
        settings: Settings,
        console: OperatorConsole,
        broker: BrokerClient | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self._settings = settings
        self._console = console
        self._broker = broker
        self._error_handler = error_handler or ErrorHandler()
        self._connected = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def error_handler(self) -> ErrorHandler:
        return self._error_handler

    @property
    def broker(self) -> BrokerClient:
        if self._broker is None:
            raise RuntimeError("broker is not initialized")
        return self._broker

    async def connect(self) -> None:
        if self._broker is None:
            self._broker = create_broker_client(self._settings)
        self._broker.add_error_listener(self._error_handler.on_transport_error)
        await self._broker.connect()
        self._connected = True

    def create_loop(self, entity: EntityDescriptor) -> SequentialProcessingLoop:
        return SequentialProcessingLoop(
            self.broker,
            self._console,
            self._error_handler,
            entity,
            invalid_input_delay_seconds=self._settings.invalid_input_delay_seconds,
            receive_retry_delay_seconds=self._settings.receive_poll_interval_seconds,
        )

    async def run(self, entity: EntityDescriptor) -> LoopStats:
        """Connect, process until cancelled, and always close the broker client."""
        try:
            await self.connect()
            return await self.create_loop(entity).run()
        finally:
            await self.close()

    async def close(self) -> None:
        if self._broker is not None:
            try:
                await self._broker.close()
            except Exception as exc:
                logger.warning("broker client close failed: {}", exc)
        self._connected = False
        _log("broker_client_closed")


def create_reader_dependencies(
    console: OperatorConsole,
    settings: Settings | None = None,
) -> ReaderDependencies:
    return ReaderDependencies(settings=settings or Settings(), console=console)
