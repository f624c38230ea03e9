"""Pusher errors. Configuration problems exit with 1, broker failures with 2."""
from __future__ import annotations


class PusherError(Exception):
    """Base for all pusher failures."""


class ConfigurationError(PusherError):
    """Missing broker settings, blank target name or an unknown priority."""


class BrokerConnectionError(PusherError):
    """Connecting to the broker failed after all attempts."""


class TargetNotFoundError(PusherError):
    def __init__(self, message: str, *, target: str) -> None:
        super().__init__(message)
        self.target = target
