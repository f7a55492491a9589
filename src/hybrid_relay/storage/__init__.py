"""Storage backends and models."""

from hybrid_relay.storage.base import RelayStore
from hybrid_relay.storage.disabled import DisabledRelayStore
from hybrid_relay.storage.memory import InMemoryRelayStore
from hybrid_relay.storage.models import (
    AsyncTask,
    ChatMessage,
    MemoryItem,
    NodeStatus,
    TaskOption,
)
from hybrid_relay.storage.postgres import PostgresRelayStore

__all__ = [
    "AsyncTask",
    "ChatMessage",
    "DisabledRelayStore",
    "InMemoryRelayStore",
    "MemoryItem",
    "NodeStatus",
    "PostgresRelayStore",
    "RelayStore",
    "TaskOption",
]
