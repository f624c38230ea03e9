"""Terminal operator console built on rich.

Operator output and log records share one lock, so a log line written from the
broker's error callback can land between two prompt lines but never inside one.
"""
from __future__ import annotations

import asyncio
import threading
from typing import Any

from rich.console import Console

from reader.app.core.errors import OperatorAbort


class RichOperatorConsole:
    """OperatorConsole implementation for an interactive terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(highlight=False)
        self._lock = threading.Lock()

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def show(self, text: str) -> None:
        with self._lock:
            self._console.print(text, markup=False, highlight=False, soft_wrap=True)

    def notify(self, text: str) -> None:
        with self._lock:
            self._console.print(text, markup=False, highlight=False)

    def write_log(self, message: Any) -> None:
        """loguru sink."""
        with self._lock:
            self._console.file.write(str(message))
            self._console.file.flush()

    def _read_line_blocking(self, prompt: str) -> str:
        with self._lock:
            self._console.print(prompt, end="", markup=False, highlight=False)
        try:
            return self._console.input()
        except EOFError as e:
            raise OperatorAbort("operator input closed") from e

    async def read_line(self, prompt: str) -> str:
        # the blocking read runs in a worker thread so broker I/O keeps flowing
        return await asyncio.to_thread(self._read_line_blocking, prompt)
