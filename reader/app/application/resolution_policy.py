from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from reader.app.core import SERVICE_NAME
from reader.app.core.errors import OperatorAbort
from reader.app.domain.formatting import RULE_WIDTH, render_message
from reader.app.domain.models import (
    DEAD_LETTER_DESCRIPTION,
    DEAD_LETTER_REASON,
    Acknowledged,
    DeadLettered,
    DeliveredMessage,
    MessageAction,
    Requeued,
    ResolutionOutcome,
    RetryInput,
    Skipped,
    parse_action,
)
from reader.app.ports.broker_client import ReceiveStream
from reader.app.ports.operator_console import OperatorConsole

ACTION_MENU = "\n".join(
    [
        "",
        "What do you want to do with this message?",
        "1) [C] Complete - mark as processed (remove from the queue)",
        "2) [A] Abandon - return to the queue",
        "3) [D] Dead Letter - move to the dead letter queue",
        "4) [S] Skip - continue without action (message stays locked)",
    ]
)
ACTION_PROMPT = "Enter choice (C/A/D/S): "
INVALID_CHOICE = "Invalid choice. Please enter C, A, D or S."


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class ResolutionPolicy:
    """
    Decides and executes exactly one resolution per delivered message.

    The operator picks the action; the broker call for it is made once. If that call
    fails the outcome is returned with failed=True and the lease is left to expire.
    If anything else fails before an action is chosen, the message is requeued so it
    is never dropped without an explicit decision.
    """

    def __init__(
        self,
        stream: ReceiveStream,
        console: OperatorConsole,
        *,
        invalid_input_delay_seconds: float = 0.0,
    ) -> None:
        self._stream = stream
        self._console = console
        self._invalid_input_delay_seconds = max(0.0, float(invalid_input_delay_seconds))

    async def resolve(self, message: DeliveredMessage) -> ResolutionOutcome:
        try:
            self._console.show(render_message(message))
            action = await self.prompt_for_action()
        except OperatorAbort:
            # input is gone: hand the message back, then let the loop shut down
            _log("operator_input_closed", message_id=message.message_id)
            await self._fail_safe_requeue(message, OperatorAbort("operator input closed"))
            raise
        except Exception as exc:
            logger.exception("message processing failed: {}", exc)
            _log("message_processing_failed", message_id=message.message_id, error=str(exc))
            return await self._fail_safe_requeue(message, exc)

        outcome = await self._execute(message, action)
        self._console.notify("=" * RULE_WIDTH)
        self._console.notify("Waiting for the next message...")
        return outcome

    async def prompt_for_action(self) -> MessageAction:
        while True:
            self._console.notify(ACTION_MENU)
            choice = parse_action(await self._console.read_line(ACTION_PROMPT))
            if not isinstance(choice, RetryInput):
                return choice
            self._console.notify(INVALID_CHOICE)
            if self._invalid_input_delay_seconds:
                await asyncio.sleep(self._invalid_input_delay_seconds)

    async def _execute(self, message: DeliveredMessage, action: MessageAction) -> ResolutionOutcome:
        message_id = message.message_id
        try:
            if action == MessageAction.COMPLETE:
                await self._stream.acknowledge(message)
                self._console.notify(f"Message {message_id} marked as processed (Complete).")
                _log("message_completed", message_id=message_id)
                return Acknowledged(message_id)

            if action == MessageAction.ABANDON:
                await self._stream.requeue(message)
                self._console.notify(f"Message {message_id} returned to the queue (Abandon).")
                _log("message_abandoned", message_id=message_id)
                return Requeued(message_id)

            if action == MessageAction.DEAD_LETTER:
                await self._stream.dead_letter(message, DEAD_LETTER_REASON, DEAD_LETTER_DESCRIPTION)
                self._console.notify(f"Message {message_id} moved to the dead letter queue.")
                _log("message_dead_lettered", message_id=message_id, reason=DEAD_LETTER_REASON)
                return DeadLettered(message_id)

            self._console.notify(f"Message {message_id} skipped (stays locked).")
            _log("message_skipped", message_id=message_id)
            return Skipped(message_id)
        except Exception as exc:
            logger.exception("action {} failed for message {}: {}", action.value, message_id, exc)
            _log("message_action_failed", message_id=message_id, action=action.value, error=str(exc))
            self._console.notify(f"Error while executing {action.value}: {exc}")
            return _failed_outcome(message, action)

    async def _fail_safe_requeue(self, message: DeliveredMessage, cause: BaseException) -> ResolutionOutcome:
        self._console.notify(f"Error while processing message: {cause}")
        self._console.notify("The message will be returned to the queue (Abandon).")
        try:
            await self._stream.requeue(message)
        except Exception as exc:
            logger.exception("requeue after processing error failed: {}", exc)
            _log("message_requeue_failed", message_id=message.message_id, error=str(exc))
            return Requeued(message.message_id, failed=True)
        _log("message_abandoned", message_id=message.message_id, fail_safe=True)
        return Requeued(message.message_id)


def _failed_outcome(message: DeliveredMessage, action: MessageAction) -> ResolutionOutcome:
    message_id = message.message_id
    if action == MessageAction.COMPLETE:
        return Acknowledged(message_id, failed=True)
    if action == MessageAction.ABANDON:
        return Requeued(message_id, failed=True)
    return DeadLettered(message_id, failed=True)
