import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from ctrlsys.errors import InvalidTransitionError
from ctrlsys.persistence.models import Timer
from ctrlsys.persistence.repositories.memory_store import InMemoryTimerStore
from ctrlsys.persistence.repositories.timer_repository import TimerRepository
from ctrlsys.service.timer_view import TimerView

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=UTC)


async def _create(provider, name="tea", duration=60, now=T0, **kw):
    async with provider.scope() as store:
        return await store.create(name=name, duration_seconds=duration, now=now, **kw)


@pytest.mark.asyncio
async def test_scope_matches_backend(provider):
    async with provider.scope() as store:
        expected = InMemoryTimerStore if provider.backend == "memory" else TimerRepository
        assert isinstance(store, expected)


@pytest.mark.asyncio
async def test_create_is_pending_without_deadline(provider):
    timer = await _create(provider, labels={"room": "kitchen"}, created_by="cli")
    assert timer.status == "pending"
    assert timer.started_at is None and timer.expires_at is None
    assert timer.labels == {"room": "kitchen"}
    assert timer.created_by == "cli"

    async with provider.scope() as store:
        fetched = await store.get(timer.timer_id)
    assert fetched.timer_id == timer.timer_id
    assert fetched.created_at == T0.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_get_unknown_returns_none(provider):
    async with provider.scope() as store:
        assert await store.get("does-not-exist") is None


@pytest.mark.asyncio
async def test_start_sets_deadline_once(provider):
    timer = await _create(provider, duration=90)
    async with provider.scope() as store:
        started, changed = await store.start(timer.timer_id, now=T0)
    assert changed is True
    assert started.status == "running"
    assert started.started_at == T0.replace(tzinfo=None)
    assert started.expires_at - started.started_at == timedelta(seconds=90)

    async with provider.scope() as store:
        again, changed = await store.start(timer.timer_id, now=T0 + timedelta(seconds=10))
    assert changed is False
    assert again.expires_at == started.expires_at


@pytest.mark.asyncio
async def test_start_unknown(provider):
    async with provider.scope() as store:
        assert await store.start("missing", now=T0) == (None, False)


@pytest.mark.asyncio
async def test_concurrent_starts_only_one_wins(provider):
    timer = await _create(provider)

    async def start_once():
        async with provider.scope() as store:
            return await store.start(timer.timer_id, now=T0)

    results = await asyncio.gather(*(start_once() for _ in range(5)))
    assert sum(1 for _, changed in results if changed) == 1
    assert {t.expires_at for t, _ in results} == {results[0][0].expires_at}


@pytest.mark.asyncio
async def test_cancel_is_idempotent(provider):
    timer = await _create(provider)
    async with provider.scope() as store:
        cancelled, changed = await store.cancel(timer.timer_id)
    assert changed is True
    assert cancelled.status == "cancelled"

    async with provider.scope() as store:
        again, changed = await store.cancel(timer.timer_id)
    assert changed is False
    assert again.status == "cancelled"


@pytest.mark.asyncio
async def test_cancelled_timer_view_is_frozen(provider):
    timer = await _create(provider)
    async with provider.scope() as store:
        await store.start(timer.timer_id, now=T0)
        await store.cancel(timer.timer_id)

    async with provider.scope() as store:
        fetched = await store.get(timer.timer_id)
    early = TimerView.from_timer(fetched, now=T0 + timedelta(seconds=1))
    late = TimerView.from_timer(fetched, now=T0 + timedelta(seconds=30))
    assert early == late
    assert early.status == "cancelled"
    assert early.remaining_seconds is None


@pytest.mark.asyncio
async def test_cancel_completed_conflicts(provider):
    timer = await _create(provider, duration=1)
    async with provider.scope() as store:
        await store.start(timer.timer_id, now=T0)
        await store.sweep_expired(T0 + timedelta(seconds=2))

    async with provider.scope() as store:
        with pytest.raises(InvalidTransitionError) as exc_info:
            await store.cancel(timer.timer_id)
    assert exc_info.value.terminal is True

    async with provider.scope() as store:
        assert (await store.get(timer.timer_id)).status == "completed"


@pytest.mark.asyncio
async def test_cancel_unknown(provider):
    async with provider.scope() as store:
        assert await store.cancel("missing") == (None, False)


@pytest.mark.asyncio
async def test_sweep_completes_only_expired_running(provider):
    expiring = await _create(provider, name="short", duration=5)
    lasting = await _create(provider, name="long", duration=600)
    pending = await _create(provider, name="idle", duration=1)
    async with provider.scope() as store:
        await store.start(expiring.timer_id, now=T0)
        await store.start(lasting.timer_id, now=T0)

    async with provider.scope() as store:
        assert await store.sweep_expired(T0 + timedelta(seconds=4)) == []
        completed = await store.sweep_expired(T0 + timedelta(seconds=5))
    assert [t.timer_id for t in completed] == [expiring.timer_id]
    assert completed[0].status == "completed"

    async with provider.scope() as store:
        assert (await store.get(lasting.timer_id)).status == "running"
        assert (await store.get(pending.timer_id)).status == "pending"
        # a second sweep finds nothing new
        assert await store.sweep_expired(T0 + timedelta(seconds=6)) == []


@pytest.mark.asyncio
async def test_concurrent_sweeps_complete_each_timer_once(provider):
    timers = [await _create(provider, name=f"t{i}", duration=1) for i in range(4)]
    async with provider.scope() as store:
        for t in timers:
            await store.start(t.timer_id, now=T0)

    async def sweep():
        async with provider.scope() as store:
            return await store.sweep_expired(T0 + timedelta(seconds=3))

    batches = await asyncio.gather(sweep(), sweep(), sweep())
    swept = [t.timer_id for batch in batches for t in batch]
    assert sorted(swept) == sorted(t.timer_id for t in timers)


@pytest.mark.asyncio
async def test_update_labels(provider):
    timer = await _create(provider, labels={"a": "1"})
    async with provider.scope() as store:
        updated = await store.update_labels(timer.timer_id, {"b": "2"})
    assert updated.labels == {"b": "2"}

    async with provider.scope() as store:
        await store.cancel(timer.timer_id)
        with pytest.raises(InvalidTransitionError):
            await store.update_labels(timer.timer_id, {"c": "3"})
        assert await store.update_labels("missing", {}) is None


@pytest.mark.asyncio
async def test_list_orders_by_status_then_newest(provider):
    now = T0 + timedelta(hours=1)
    old_pending = await _create(provider, name="old-pending", now=T0)
    new_pending = await _create(provider, name="new-pending", now=T0 + timedelta(minutes=5))
    running = await _create(provider, name="running", now=T0 + timedelta(minutes=1))
    cancelled = await _create(provider, name="cancelled", now=T0 + timedelta(minutes=2))
    async with provider.scope() as store:
        await store.start(running.timer_id, now=T0 + timedelta(minutes=1))
        await store.cancel(cancelled.timer_id)

    async with provider.scope() as store:
        listed = await store.list_timers(now=now)
    assert [t.name for t in listed] == ["running", "new-pending", "old-pending", "cancelled"]
    assert old_pending.timer_id in {t.timer_id for t in listed}
    assert new_pending.timer_id in {t.timer_id for t in listed}


@pytest.mark.asyncio
async def test_list_hides_old_finished_timers_but_keeps_active(provider):
    old_done = await _create(provider, name="old-done", now=T0)
    old_running = await _create(provider, name="old-running", duration=86400, now=T0)
    async with provider.scope() as store:
        await store.cancel(old_done.timer_id)
        await store.start(old_running.timer_id, now=T0)

    later = T0 + timedelta(hours=25)
    async with provider.scope() as store:
        names = [t.name for t in await store.list_timers(now=later)]
        assert names == ["old-running"]
        # the retention window is configurable
        wide = await store.list_timers(now=later, retention=timedelta(hours=48))
    assert {t.name for t in wide} == {"old-running", "old-done"}


@pytest.mark.asyncio
async def test_delete(provider):
    timer = await _create(provider)
    async with provider.scope() as store:
        assert await store.delete(timer.timer_id) is True
        assert await store.delete(timer.timer_id) is False
        assert await store.get(timer.timer_id) is None


@pytest.mark.asyncio
async def test_returned_rows_are_snapshots():
    store = InMemoryTimerStore()
    timer = await store.create(name="x", duration_seconds=5, now=T0)
    timer.labels["mutated"] = "yes"
    assert (await store.get(timer.timer_id)).labels == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, duration",
    [("paused", 60), ("running", 0), ("running", 86401)],
)
async def test_schema_rejects_rows_outside_the_lifecycle(sql_provider, status, duration):
    async with sql_provider.session_factory() as session:
        session.add(Timer(timer_id="bad", name="bad", duration_seconds=duration, status=status, labels={}))
        with pytest.raises(IntegrityError):
            await session.commit()
