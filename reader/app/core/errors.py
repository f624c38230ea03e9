"""Reader error taxonomy.

Configuration errors and unrecoverable broker errors end the process; everything
else is handled where it happens and never stops the processing loop.
"""
from __future__ import annotations


class ReaderError(Exception):
    """Base for all reader failures."""


class ConfigurationError(ReaderError):
    """Missing or invalid endpoint / entity configuration. Fatal before the loop starts."""


class BrokerError(ReaderError):
    """Base for broker transport failures."""

    def __init__(self, message: str, *, entity_path: str | None = None) -> None:
        super().__init__(message)
        self.entity_path = entity_path


class BrokerConnectionError(BrokerError):
    """Connecting to the broker failed after all attempts."""


class AuthenticationError(BrokerError):
    """Broker rejected the credentials."""


class EntityNotFoundError(BrokerError):
    """The queue, topic or subscription does not exist."""


class ReconnectExhaustedError(BrokerError):
    """Connection dropped and could not be re-established."""


class LeaseLostError(BrokerError):
    """Settlement attempted on a delivery whose lease expired or was already released."""


class OperatorAbort(ReaderError):
    """Operator input stream closed (EOF) while a choice was pending."""


FATAL_BROKER_ERRORS: tuple[type[BrokerError], ...] = (
    AuthenticationError,
    EntityNotFoundError,
    ReconnectExhaustedError,
    BrokerConnectionError,
)


def is_fatal(exc: BaseException) -> bool:
    return isinstance(exc, (ConfigurationError, *FATAL_BROKER_ERRORS))
