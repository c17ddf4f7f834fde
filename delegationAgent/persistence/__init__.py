"""Checkpoint persistence."""

from .checkpointer import CheckpointAdapter, derive_user_id
from .serialization import deserialize_state, serialize_state
from .store import Checkpoint, CheckpointStore, InMemoryCheckpointStore, SQLiteCheckpointStore

__all__ = [
    "CheckpointAdapter",
    "derive_user_id",
    "deserialize_state",
    "serialize_state",
    "Checkpoint",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLiteCheckpointStore",
]
