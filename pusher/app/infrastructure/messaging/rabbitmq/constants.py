"""RabbitMQ publisher lifecycle states."""
from enum import Enum


class PublisherState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CONFIRM_ENABLED = "CONFIRM_ENABLED"
    ENTITY_RESOLVED = "ENTITY_RESOLVED"
    READY = "READY"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
