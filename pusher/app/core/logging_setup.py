from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "{extra[service_name]} | <cyan>{extra[event]}</cyan> {message}"
)


def configure_logging(*, level: str = "INFO", serialize: bool = False) -> None:
    logger.remove()
    logger.configure(extra={"service_name": "-", "event": "-"})
    if serialize:
        logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
