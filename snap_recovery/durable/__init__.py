"""Replay support: host primitives and checkpoint stores."""

from .host import AsyncioHost, OrchestrationHost
from .checkpoint_store import CheckpointStore, InMemoryCheckpointStore, JsonFileCheckpointStore

__all__ = [
    "AsyncioHost",
    "OrchestrationHost",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "JsonFileCheckpointStore",
]
