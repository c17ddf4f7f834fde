"""Tests for the bounded event channel."""

import asyncio
import time

import pytest

from delegationAgent.runtime.events import EventChannel, EventPublisher
from delegationAgent.runtime.models import EventType, Execution


def _execution():
    return Execution(execution_id="exec_1", thread_id="t1", agent_id="researcher", deadline=time.time() + 60)


@pytest.mark.asyncio
async def test_close_on_full_queue_does_not_block():
    channel = EventChannel(maxsize=2)
    publisher = EventPublisher(channel, _execution())
    await publisher.emit(EventType.ROUTING)
    await publisher.emit(EventType.EXECUTING)

    await asyncio.wait_for(channel.close(), timeout=0.5)

    assert channel.closed
    events = await asyncio.wait_for(_drain(channel), timeout=0.5)
    assert [event.type for event in events] == [EventType.ROUTING, EventType.EXECUTING]


@pytest.mark.asyncio
async def test_consumer_stops_at_close_marker():
    channel = EventChannel(maxsize=10)
    publisher = EventPublisher(channel, _execution())
    await publisher.emit(EventType.ROUTING, {"decision": "handle"})
    await channel.close()

    # Emitted after close: dropped
    await publisher.emit(EventType.COMPLETED)

    events = await asyncio.wait_for(_drain(channel), timeout=0.5)
    assert [event.type for event in events] == [EventType.ROUTING]
    assert events[0].payload == {"decision": "handle"}
    assert events[0].sequence == 1


@pytest.mark.asyncio
async def test_waiting_consumer_is_woken_by_close():
    channel = EventChannel(maxsize=10)
    consumer = asyncio.create_task(_drain(channel))
    await asyncio.sleep(0.01)

    await channel.close()

    assert await asyncio.wait_for(consumer, timeout=0.5) == []


def test_single_consumer():
    channel = EventChannel()
    channel.__aiter__()
    with pytest.raises(RuntimeError):
        channel.__aiter__()


async def _drain(channel):
    return [event async for event in channel]
