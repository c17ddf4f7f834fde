"""Event channel: one bounded queue per top-level run, exactly one consumer.

A full queue blocks the producer instead of dropping events. Child executions
publish into their root's channel, so events of sibling executions interleave while
events of one execution stay in order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

from delegationAgent.runtime.models import Event, EventType, Execution

LOGGER = logging.getLogger(__name__)

_CLOSED = object()


class EventChannel:
    """Bounded async event queue with a single consumer."""

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._consumer_attached = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, event: Event) -> None:
        if self._closed:
            LOGGER.debug(f"Dropping {event.type.value} for {event.execution_id}: channel closed")
            return
        await self._queue.put(event)

    async def close(self) -> None:
        """Mark the channel closed without waiting on a full queue.

        When the queue is full the end marker is skipped; the consumer stops once it
        has drained the queue.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            LOGGER.debug("Event queue full at close; consumer stops after draining it")

    def __aiter__(self) -> AsyncIterator[Event]:
        if self._consumer_attached:
            raise RuntimeError("EventChannel already has a consumer")
        self._consumer_attached = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class EventPublisher:
    """Stamps and publishes events for one execution.

    Events carry the execution's ``unpersisted_risk`` flag at emission time.
    """

    def __init__(self, channel: Optional[EventChannel], execution: Execution):
        self.channel = channel
        self.execution = execution
        self._sequence = 0

    async def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> Event:
        self._sequence += 1
        event = Event(
            type=event_type,
            execution_id=self.execution.execution_id,
            timestamp=time.time(),
            payload=dict(payload or {}),
            agent_id=self.execution.agent_id,
            parent_execution_id=self.execution.parent_execution_id,
            depth=self.execution.depth,
            sequence=self._sequence,
            unpersisted_risk=self.execution.unpersisted_risk,
        )
        if self.channel is not None:
            await self.channel.put(event)
        return event
