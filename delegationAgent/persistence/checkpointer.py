"""Checkpoint adapter: ordered, retried writes on top of a CheckpointStore.

Writes for one thread are serialized under a per-thread lock and get strictly
increasing ids; writes for different threads run concurrently. A failed write
does not consume its id.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from delegationAgent.persistence.serialization import deserialize_state, serialize_state
from delegationAgent.persistence.store import Checkpoint, CheckpointStore
from delegationAgent.utils.errors import CheckpointWriteFailure, describe_error
from delegationAgent.utils.retry import RetryExhausted, RetryPolicy, retry_async

LOGGER = logging.getLogger(__name__)

CRITICAL_PHASES = frozenset({"tools", "finalize"})


def derive_user_id(thread_id: str, explicit: Optional[str] = None) -> str:
    """User owning a thread: explicit id, else the thread prefix before ``:``."""
    if explicit:
        return explicit
    return thread_id.split(":", 1)[0]


class CheckpointAdapter:
    """Serializes execution state and writes checkpoints in order."""

    def __init__(self, store: CheckpointStore, policy: Optional[RetryPolicy] = None, *, mode: str = "every_step"):
        self.store = store
        self.policy = policy or RetryPolicy()
        self.mode = mode
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_ids: Dict[str, int] = {}

    def should_checkpoint(self, phase: Optional[str]) -> bool:
        """Whether a plan step that just finished ``phase`` needs a checkpoint."""
        if self.mode == "every_step":
            return True
        return phase in CRITICAL_PHASES

    # ========== Writes ==========

    async def write(
        self,
        thread_id: str,
        state: Dict[str, Any],
        metadata: Dict[str, Any],
        *,
        user_id: Optional[str] = None,
    ) -> Checkpoint:
        """Persist a checkpoint for ``thread_id``.

        Raises:
            CheckpointWriteFailure: ``fatal=True`` if the state cannot be serialized,
                ``fatal=False`` once retries are exhausted
        """
        try:
            state_blob = serialize_state(state)
            metadata = json.loads(json.dumps(metadata, ensure_ascii=False))
        except (TypeError, ValueError) as e:
            raise CheckpointWriteFailure(thread_id, f"state is not serializable: {e}", fatal=True) from e

        async with self._lock_for(thread_id):
            try:
                last_id = await self._last_id(thread_id)
            except RetryExhausted as e:
                raise CheckpointWriteFailure(thread_id, describe_error(e.last_error), attempts=e.attempts) from e

            checkpoint = Checkpoint(
                thread_id=thread_id,
                checkpoint_id=last_id + 1,
                state_blob=state_blob,
                metadata=metadata,
                derived_user_id=derive_user_id(thread_id, user_id),
                created_at=datetime.now(timezone.utc),
                parent_checkpoint_id=last_id or None,
            )

            def on_retry(attempt: int, error: BaseException) -> None:
                LOGGER.warning(f"Checkpoint write {thread_id}#{checkpoint.checkpoint_id} attempt {attempt} failed: {error}")

            try:
                await retry_async(lambda: self.store.put(thread_id, checkpoint), self.policy, on_retry=on_retry)
            except RetryExhausted as e:
                # Re-read the latest id next time in case a failed attempt actually landed
                self._last_ids.pop(thread_id, None)
                LOGGER.error(f"Checkpoint write {thread_id}#{checkpoint.checkpoint_id} gave up: {e.last_error}")
                raise CheckpointWriteFailure(thread_id, describe_error(e.last_error), attempts=e.attempts) from e

            self._last_ids[thread_id] = checkpoint.checkpoint_id

        LOGGER.debug(
            f"Checkpoint {thread_id}#{checkpoint.checkpoint_id} written "
            f"(status={metadata.get('status')}, phase={metadata.get('phase')})"
        )
        return checkpoint

    def release(self, thread_id: str) -> None:
        """Forget a thread's write lock and cached last id.

        Called once the thread's execution is terminal. A later write re-reads the
        last id from the store, so ids keep increasing.
        """
        lock = self._locks.get(thread_id)
        if lock is not None and not lock.locked():
            del self._locks[thread_id]
        self._last_ids.pop(thread_id, None)

    def tracked_threads(self) -> int:
        return len(self._locks.keys() | self._last_ids.keys())

    # ========== Reads ==========

    async def latest(self, thread_id: str) -> Optional[Checkpoint]:
        return await self.store.get(thread_id)

    async def get(self, thread_id: str, checkpoint_id: Optional[int] = None) -> Optional[Checkpoint]:
        return await self.store.get(thread_id, checkpoint_id)

    async def list(self, thread_id: str, *, before: Optional[int] = None, limit: Optional[int] = None) -> List[Checkpoint]:
        return await self.store.list(thread_id, before=before, limit=limit)

    @staticmethod
    def load_state(checkpoint: Checkpoint) -> Dict[str, Any]:
        return deserialize_state(checkpoint.state_blob)

    # ========== Internals ==========

    def _lock_for(self, thread_id: str) -> asyncio.Lock:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = self._locks[thread_id] = asyncio.Lock()
        return lock

    async def _last_id(self, thread_id: str) -> int:
        if thread_id in self._last_ids:
            return self._last_ids[thread_id]
        latest = await retry_async(lambda: self.store.get(thread_id), self.policy)
        last_id = latest.checkpoint_id if latest else 0
        self._last_ids[thread_id] = last_id
        return last_id
