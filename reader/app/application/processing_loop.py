"""
Sequential processing loop: one delivery at a time, from receive to resolution.

Per iteration:
  check cancellation -> await next delivery (or cancellation) -> acquire gate ->
  resolve -> release gate.
Cancellation is only observed at iteration boundaries and while waiting for a
delivery, so a resolution that has started always finishes before the receive
stream is closed. A failed receive is reported to the error handler and retried
after a short pause; only a fatal error recorded there ends the loop.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from reader.app.application.error_handler import ErrorHandler
from reader.app.application.resolution_policy import ResolutionPolicy
from reader.app.core import SERVICE_NAME
from reader.app.core.errors import OperatorAbort
from reader.app.domain.models import (
    DeliveredMessage,
    EntityDescriptor,
    ReceiverOptions,
    Requeued,
    ResolutionOutcome,
)
from reader.app.ports.broker_client import BrokerClient, ReceiveStream, TransportErrorEvent
from reader.app.ports.operator_console import OperatorConsole


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class AdmissionGate:
    """Single-slot gate around resolution. Never held by more than one cycle."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._holders = 0
        self.max_observed_holders = 0
        self.admissions = 0

    @property
    def holders(self) -> int:
        return self._holders

    def locked(self) -> bool:
        return self._lock.locked()

    async def __aenter__(self) -> "AdmissionGate":
        await self._lock.acquire()
        self._holders += 1
        self.admissions += 1
        self.max_observed_holders = max(self.max_observed_holders, self._holders)
        if self._holders > 1:
            self._holders -= 1
            self._lock.release()
            raise RuntimeError("admission gate held by more than one resolution")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._holders -= 1
        self._lock.release()


@dataclass
class LoopStats:
    outcomes: Counter = field(default_factory=Counter)
    failed_actions: int = 0

    @property
    def processed(self) -> int:
        return sum(self.outcomes.values())

    def record(self, outcome: ResolutionOutcome) -> None:
        self.outcomes[type(outcome).__name__] += 1
        if outcome.failed:
            self.failed_actions += 1


class SequentialProcessingLoop:
    """Drives the resolution policy for every delivery of one entity, strictly one at a time."""

    def __init__(
        self,
        broker: BrokerClient,
        console: OperatorConsole,
        error_handler: ErrorHandler,
        entity: EntityDescriptor,
        *,
        invalid_input_delay_seconds: float = 0.0,
        receive_retry_delay_seconds: float = 1.0,
        gate: AdmissionGate | None = None,
    ) -> None:
        self._broker = broker
        self._console = console
        self._error_handler = error_handler
        self._entity = entity
        self._invalid_input_delay_seconds = invalid_input_delay_seconds
        self._receive_retry_delay_seconds = receive_retry_delay_seconds
        self._options = ReceiverOptions(max_concurrent=1, auto_complete=False)
        self._gate = gate or AdmissionGate()
        self._stream: ReceiveStream | None = None
        self.stats = LoopStats()

    @property
    def gate(self) -> AdmissionGate:
        return self._gate

    @property
    def cancellation(self) -> asyncio.Event:
        return self._error_handler.cancellation

    async def run(self) -> LoopStats:
        entity_path = self._entity.path
        self._stream = await self._broker.open_receiver(self._entity, self._options)
        policy = ResolutionPolicy(
            self._stream,
            self._console,
            invalid_input_delay_seconds=self._invalid_input_delay_seconds,
        )
        _log("reader_started", entity_type=self._entity.kind.value, entity_path=entity_path)
        self._console.notify(f"Message processor started for {self._entity.kind.value}: {entity_path}")
        self._console.notify("Waiting for messages... Press Ctrl+C to stop.")
        try:
            while not self.cancellation.is_set():
                try:
                    message = await self._next_or_cancelled(self._stream)
                except Exception as exc:
                    # fatal errors set the cancellation event; anything else is retried
                    self._error_handler.on_transport_error(
                        TransportErrorEvent(error=exc, error_source="receive", entity_path=entity_path)
                    )
                    await self._pause_unless_cancelled(self._receive_retry_delay_seconds)
                    continue
                if message is None:
                    break
                _log(
                    "message_received",
                    message_id=message.message_id,
                    delivery_count=message.delivery_count,
                    entity_path=entity_path,
                )
                try:
                    async with self._gate:
                        outcome = await policy.resolve(message)
                except OperatorAbort:
                    self.stats.record(Requeued(message.message_id))
                    self._error_handler.request_shutdown()
                    break
                self.stats.record(outcome)
        finally:
            _log("reader_stopping", entity_path=entity_path, processed=self.stats.processed)
            await self._close_stream()
            _log(
                "reader_stopped",
                entity_path=entity_path,
                processed=self.stats.processed,
                failed_actions=self.stats.failed_actions,
            )
        self._error_handler.raise_if_fatal()
        return self.stats

    async def _next_or_cancelled(self, stream: ReceiveStream) -> DeliveredMessage | None:
        receive = asyncio.ensure_future(stream.next())
        cancelled = asyncio.ensure_future(self.cancellation.wait())
        try:
            done, _ = await asyncio.wait({receive, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (receive, cancelled):
                if not task.done():
                    task.cancel()
            await asyncio.gather(cancelled, return_exceptions=True)
        if receive not in done:
            await asyncio.gather(receive, return_exceptions=True)
            if receive.cancelled() or receive.exception() is not None:
                return None
        # a delivery that raced the cancellation still gets resolved
        return receive.result()

    async def _pause_unless_cancelled(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self.cancellation.wait(), seconds)
        except asyncio.TimeoutError:
            pass

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            await stream.close()
        except Exception as exc:
            logger.warning("receive stream close failed: {}", exc)
