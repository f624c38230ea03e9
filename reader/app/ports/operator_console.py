"""Port: operator interaction surface."""
from __future__ import annotations

from typing import Protocol


class OperatorConsole(Protocol):
    def show(self, text: str) -> None:
        """Print a block verbatim (message details)."""
        ...

    def notify(self, text: str) -> None:
        """Print a one-line status notice."""
        ...

    async def read_line(self, prompt: str) -> str:
        """Read one line. Raises OperatorAbort when input is closed."""
        ...
