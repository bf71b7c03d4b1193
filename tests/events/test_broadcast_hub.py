import asyncio

import pytest

from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.events.eventbus_model import TimerEvent, TimerEventType


def _event(timer_id="t-1", event_type=TimerEventType.Tick, remaining=10):
    return TimerEvent(timer_id=timer_id, event_type=event_type, status="running", remaining_seconds=remaining)


def test_publish_without_subscribers_is_a_noop():
    hub = BroadcastHub()
    assert hub.publish(_event()) == 0
    assert hub.dropped == 0


@pytest.mark.asyncio
async def test_every_subscriber_gets_every_event_in_order():
    hub = BroadcastHub(buffer_size=10)
    with hub.subscribe() as a, hub.subscribe() as b:
        for i in range(3):
            assert hub.publish(_event(remaining=i)) == 2
        for sub in (a, b):
            got = [(await sub.get()).remaining_seconds for _ in range(3)]
            assert got == [0, 1, 2]


@pytest.mark.asyncio
async def test_no_history_for_late_subscribers():
    hub = BroadcastHub()
    hub.publish(_event())
    with hub.subscribe() as sub:
        assert await sub.get(timeout=0.05) is None


@pytest.mark.asyncio
async def test_full_buffer_drops_silently_for_that_subscriber_only():
    hub = BroadcastHub(buffer_size=2)
    with hub.subscribe() as slow, hub.subscribe() as fast:
        hub.publish(_event(remaining=1))
        assert (await fast.get()).remaining_seconds == 1
        hub.publish(_event(remaining=2))
        assert (await fast.get()).remaining_seconds == 2

        delivered = hub.publish(_event(remaining=3))
        assert delivered == 1
        assert hub.dropped == 1
        assert slow.pending() == 2
        assert (await fast.get()).remaining_seconds == 3
        assert [(await slow.get()).remaining_seconds for _ in range(2)] == [1, 2]


@pytest.mark.asyncio
async def test_unsubscribe_on_close():
    hub = BroadcastHub()
    sub = hub.subscribe()
    assert hub.subscriber_count == 1
    hub.publish(_event())
    sub.close()
    sub.close()
    assert hub.subscriber_count == 0
    assert sub.pending() == 0
    assert hub.publish(_event()) == 0


@pytest.mark.asyncio
async def test_async_iteration_and_context_manager():
    hub = BroadcastHub()
    received = []

    async def consume():
        async with hub.subscribe() as sub:
            async for event in sub:
                received.append(event.event_type)
                if event.event_type == TimerEventType.Completed:
                    break

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)
    hub.publish(_event())
    hub.publish(_event(event_type=TimerEventType.Completed, remaining=0))
    await asyncio.wait_for(task, timeout=1)
    assert received == [TimerEventType.Tick, TimerEventType.Completed]
    assert hub.subscriber_count == 0


def test_clear_drops_everyone():
    hub = BroadcastHub()
    subs = [hub.subscribe() for _ in range(3)]
    hub.clear()
    assert hub.subscriber_count == 0
    assert all(s.closed for s in subs)


def test_buffer_size_must_be_positive():
    with pytest.raises(ValueError):
        BroadcastHub(buffer_size=0)
