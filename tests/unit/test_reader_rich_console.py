import asyncio
import io

import pytest
from rich.console import Console

from reader.app.core.errors import OperatorAbort
from reader.app.infrastructure.console.rich_console import RichOperatorConsole


def _console() -> tuple[RichOperatorConsole, io.StringIO]:
    out = io.StringIO()
    return RichOperatorConsole(Console(file=out, force_terminal=False, width=120)), out


def test_show_prints_text_without_markup():
    console, out = _console()

    console.show('{"tag": "[bold]"}')

    assert '{"tag": "[bold]"}' in out.getvalue()


def test_log_sink_writes_through_the_same_console():
    console, out = _console()

    console.notify("Configured: queue orders")
    console.write_log("2024-05-01 | INFO | reader_started\n")

    assert out.getvalue().splitlines() == ["Configured: queue orders", "2024-05-01 | INFO | reader_started"]


def test_read_line_returns_operator_answer(monkeypatch):
    console, out = _console()
    monkeypatch.setattr("builtins.input", lambda *args: "c")

    answer = asyncio.run(console.read_line("Enter choice (C/A/D/S): "))

    assert answer == "c"
    assert "Enter choice (C/A/D/S): " in out.getvalue()


def test_closed_input_raises_operator_abort(monkeypatch):
    console, _ = _console()

    def _eof(*args):
        raise EOFError

    monkeypatch.setattr("builtins.input", _eof)

    with pytest.raises(OperatorAbort):
        asyncio.run(console.read_line("> "))
