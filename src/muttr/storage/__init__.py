"""Content-addressed storage: DHT handle, storage gate and connection."""

from .connection import ConnectionConfig, PortMapper, StorageConnection
from .dht import DHTNetwork, InMemoryDHT, NetworkFactory, in_memory_network
from .gate import StorageGate, validate_message, validate_message_body, validate_message_key

__all__ = [
    "ConnectionConfig",
    "DHTNetwork",
    "InMemoryDHT",
    "NetworkFactory",
    "PortMapper",
    "StorageConnection",
    "StorageGate",
    "in_memory_network",
    "validate_message",
    "validate_message_body",
    "validate_message_key",
]
