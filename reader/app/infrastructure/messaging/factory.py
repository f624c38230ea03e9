"""Broker client factory: selects implementation from config. Only place that imports concrete clients."""
from __future__ import annotations

from reader.app.config.settings import Settings
from reader.app.core.errors import ConfigurationError
from reader.app.infrastructure.messaging.rabbitmq.rabbitmq_broker_client import RabbitMQBrokerClient
from reader.app.ports.broker_client import BrokerClient


def create_broker_client(settings: Settings) -> BrokerClient:
    backend = settings.broker_backend.strip().lower()

    if backend == "rabbitmq":
        if not settings.broker_configured:
            raise ConfigurationError("BROKER_URL or BROKER_HOST is required")
        return RabbitMQBrokerClient(settings)

    raise ConfigurationError(f"Unsupported broker backend: {backend}")
