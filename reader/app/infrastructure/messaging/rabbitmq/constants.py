"""RabbitMQ broker client lifecycle states and header names."""
from enum import Enum


class ConsumerState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    READY = "READY"
    RECONNECTING = "RECONNECTING"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


# Quorum queues count prior deliveries in this header; classic queues only flag `redelivered`.
DELIVERY_COUNT_HEADER = "x-delivery-count"
DEAD_LETTER_REASON_HEADER = "x-dead-letter-reason"
DEAD_LETTER_DESCRIPTION_HEADER = "x-dead-letter-description"
DEAD_LETTER_SOURCE_HEADER = "x-dead-letter-source"
BROKER_HEADER_PREFIX = "x-"
