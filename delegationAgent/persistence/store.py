"""Checkpoint storage backends.

The store is a plain key-value service: ``put`` / ``get`` / ``list`` by thread.
Id assignment and write ordering live in ``CheckpointAdapter``; stores only refuse
ids that do not increase.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class Checkpoint:
    """Durable snapshot of one execution state."""

    thread_id: str
    checkpoint_id: int
    state_blob: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    derived_user_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    parent_checkpoint_id: Optional[int] = None


class CheckpointStore(Protocol):
    """Key-value persistence for checkpoints."""

    async def put(self, thread_id: str, checkpoint: Checkpoint) -> None:
        ...

    async def get(self, thread_id: str, checkpoint_id: Optional[int] = None) -> Optional[Checkpoint]:
        """Return a checkpoint by id, or the latest one when ``checkpoint_id`` is None."""
        ...

    async def list(self, thread_id: str, *, before: Optional[int] = None, limit: Optional[int] = None) -> List[Checkpoint]:
        """Return checkpoints newest first."""
        ...


class InMemoryCheckpointStore:
    """Process-local store, used by default and in tests."""

    def __init__(self):
        self._threads: Dict[str, List[Checkpoint]] = {}

    async def put(self, thread_id: str, checkpoint: Checkpoint) -> None:
        history = self._threads.setdefault(thread_id, [])
        if history and checkpoint.checkpoint_id <= history[-1].checkpoint_id:
            raise ValueError(
                f"Checkpoint id {checkpoint.checkpoint_id} for thread {thread_id} "
                f"is not after {history[-1].checkpoint_id}"
            )
        history.append(copy.deepcopy(checkpoint))

    async def get(self, thread_id: str, checkpoint_id: Optional[int] = None) -> Optional[Checkpoint]:
        history = self._threads.get(thread_id) or []
        if not history:
            return None
        if checkpoint_id is None:
            return copy.deepcopy(history[-1])
        for checkpoint in reversed(history):
            if checkpoint.checkpoint_id == checkpoint_id:
                return copy.deepcopy(checkpoint)
        return None

    async def list(self, thread_id: str, *, before: Optional[int] = None, limit: Optional[int] = None) -> List[Checkpoint]:
        history = [
            checkpoint for checkpoint in reversed(self._threads.get(thread_id) or [])
            if before is None or checkpoint.checkpoint_id < before
        ]
        if limit is not None:
            history = history[:limit]
        return [copy.deepcopy(checkpoint) for checkpoint in history]

    def threads(self) -> List[str]:
        return list(self._threads)


class SQLiteCheckpointStore:
    """SQLite-backed store. Blocking calls run in a worker thread."""

    def __init__(self, db_path: str = "data/checkpoints.db"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS checkpoints (
                    thread_id TEXT NOT NULL,
                    checkpoint_id INTEGER NOT NULL,
                    parent_checkpoint_id INTEGER,
                    state_blob TEXT NOT NULL,
                    metadata_json TEXT NOT NULL,
                    derived_user_id TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (thread_id, checkpoint_id)
                )
            """)
            conn.commit()
        finally:
            conn.close()

    # ========== Async API ==========

    async def put(self, thread_id: str, checkpoint: Checkpoint) -> None:
        await asyncio.to_thread(self._put, thread_id, checkpoint)

    async def get(self, thread_id: str, checkpoint_id: Optional[int] = None) -> Optional[Checkpoint]:
        return await asyncio.to_thread(self._get, thread_id, checkpoint_id)

    async def list(self, thread_id: str, *, before: Optional[int] = None, limit: Optional[int] = None) -> List[Checkpoint]:
        return await asyncio.to_thread(self._list, thread_id, before, limit)

    # ========== Blocking implementation ==========

    def _put(self, thread_id: str, checkpoint: Checkpoint) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT MAX(checkpoint_id) FROM checkpoints WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()
            latest = row[0] if row else None
            if latest is not None and checkpoint.checkpoint_id <= latest:
                raise ValueError(
                    f"Checkpoint id {checkpoint.checkpoint_id} for thread {thread_id} is not after {latest}"
                )
            conn.execute(
                """INSERT INTO checkpoints
                   (thread_id, checkpoint_id, parent_checkpoint_id, state_blob, metadata_json, derived_user_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    thread_id,
                    checkpoint.checkpoint_id,
                    checkpoint.parent_checkpoint_id,
                    checkpoint.state_blob,
                    json.dumps(checkpoint.metadata, ensure_ascii=False),
                    checkpoint.derived_user_id,
                    checkpoint.created_at.isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def _get(self, thread_id: str, checkpoint_id: Optional[int]) -> Optional[Checkpoint]:
        conn = sqlite3.connect(self.db_path)
        try:
            if checkpoint_id is None:
                cursor = conn.execute(
                    f"SELECT {self._COLUMNS} FROM checkpoints WHERE thread_id = ? "
                    "ORDER BY checkpoint_id DESC LIMIT 1",
                    (thread_id,),
                )
            else:
                cursor = conn.execute(
                    f"SELECT {self._COLUMNS} FROM checkpoints WHERE thread_id = ? AND checkpoint_id = ?",
                    (thread_id, checkpoint_id),
                )
            row = cursor.fetchone()
            return self._row_to_checkpoint(row) if row else None
        finally:
            conn.close()

    def _list(self, thread_id: str, before: Optional[int], limit: Optional[int]) -> List[Checkpoint]:
        query = f"SELECT {self._COLUMNS} FROM checkpoints WHERE thread_id = ?"
        params: List[Any] = [thread_id]
        if before is not None:
            query += " AND checkpoint_id < ?"
            params.append(before)
        query += " ORDER BY checkpoint_id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        conn = sqlite3.connect(self.db_path)
        try:
            return [self._row_to_checkpoint(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    _COLUMNS = "thread_id, checkpoint_id, parent_checkpoint_id, state_blob, metadata_json, derived_user_id, created_at"

    @staticmethod
    def _row_to_checkpoint(row) -> Checkpoint:
        thread_id, checkpoint_id, parent_id, state_blob, metadata_json, user_id, created_at = row
        return Checkpoint(
            thread_id=thread_id,
            checkpoint_id=checkpoint_id,
            state_blob=state_blob,
            metadata=json.loads(metadata_json),
            derived_user_id=user_id,
            created_at=datetime.fromisoformat(created_at),
            parent_checkpoint_id=parent_id,
        )
