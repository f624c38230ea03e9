"""loguru sink configuration for the reader process."""
from __future__ import annotations

import sys
from typing import Any, Callable

from loguru import logger

_RESERVED = ("service_name", "event")

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "{extra[service_name]} | <cyan>{extra[event]}</cyan> {message}{extra[_fields]}\n{exception}"
)


def _inject_fields(record: dict[str, Any]) -> None:
    extra = record["extra"]
    extra.setdefault("service_name", "-")
    extra.setdefault("event", "-")
    fields = " ".join(f"{key}={value}" for key, value in extra.items() if key not in _RESERVED and key != "_fields")
    extra["_fields"] = f" {fields}" if fields else ""


def configure_logging(
    *,
    level: str = "INFO",
    serialize: bool = False,
    sink: Callable[[Any], None] | None = None,
) -> None:
    """Replace the default stderr sink. `sink` lets the operator console serialize output."""
    logger.remove()
    logger.configure(patcher=_inject_fields)
    target = sink if sink is not None else sys.stderr
    if serialize:
        logger.add(target, level=level.upper(), serialize=True)
        return
    logger.add(target, level=level.upper(), format=LOG_FORMAT, colorize=sink is None)
