import asyncio

import pytest

from ctrlsys.domain.timer_state import JobState
from ctrlsys.errors import ControlPlaneUnavailableError, TimerJobError
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.events.eventbus_model import TimerEventType
from ctrlsys.job.config import JobConfig
from ctrlsys.job.runner import TimerRunner
from ctrlsys.job.status import JobStatus, StatusCell
from ctrlsys.service.completion_service import CompletionAck


class FakeReporter:
    def __init__(self, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.reports = []

    async def send(self, report):
        self.reports.append(report)
        await asyncio.sleep(self.delay)
        if self.fail:
            raise ControlPlaneUnavailableError("connection refused")
        return CompletionAck(acknowledged=True, timer_id=report.timer_id)


def _setup(duration=1, interval_ms=100, reporter=None):
    config = JobConfig(
        timer_id="job-1",
        name="blink",
        duration_seconds=duration,
        control_plane_endpoint="http://cp",
        update_interval_ms=interval_ms,
    )
    hub = BroadcastHub(1000)
    cell = StatusCell(JobStatus.from_config(config))
    reporter = reporter or FakeReporter()
    return TimerRunner(config, cell, hub, reporter), cell, hub, reporter


async def _states(sub):
    seen = []
    while (event := await sub.get(timeout=0.01)) is not None:
        if not seen or seen[-1] != event.status:
            seen.append(event.status)
    return seen


@pytest.mark.asyncio
async def test_runs_to_completion_and_reports_once():
    runner, cell, hub, reporter = _setup()
    with hub.subscribe() as sub:
        await asyncio.wait_for(runner.run(), timeout=5)
        states = await _states(sub)

    assert states == ["starting", "running", "completed"]
    assert len(reporter.reports) == 1
    report = reporter.reports[0]
    assert report.timer_id == "job-1"
    assert report.metadata.name == "blink"
    assert report.total_duration_seconds >= 1

    async with cell.read() as status:
        assert status.state == JobState.COMPLETED
        assert status.completed_at is not None
        assert status.error_message is None


@pytest.mark.asyncio
async def test_completion_waits_for_the_acknowledgement():
    runner, cell, hub, reporter = _setup(reporter=FakeReporter(delay=0.3))
    task = asyncio.create_task(runner.run())

    while not reporter.reports:
        await asyncio.sleep(0.02)
    async with cell.read() as status:
        assert status.state == JobState.RUNNING
        assert status.remaining_seconds() == 0

    await asyncio.wait_for(task, timeout=2)
    async with cell.read() as status:
        assert status.state == JobState.COMPLETED


@pytest.mark.asyncio
async def test_report_failure_marks_failed():
    runner, cell, hub, reporter = _setup(reporter=FakeReporter(fail=True))
    with hub.subscribe() as sub:
        with pytest.raises(ControlPlaneUnavailableError):
            await asyncio.wait_for(runner.run(), timeout=5)
        events = []
        while (event := await sub.get(timeout=0.01)) is not None:
            events.append(event)

    assert len(reporter.reports) == 1
    assert events[-1].event_type == TimerEventType.Failed
    assert not any(e.status == "completed" for e in events)
    async with cell.read() as status:
        assert status.state == JobState.FAILED
        assert status.error_message.startswith("Failed to report completion")


@pytest.mark.asyncio
async def test_force_stop_fails_a_running_timer():
    runner, cell, hub, reporter = _setup(duration=30)
    task = asyncio.create_task(runner.run())
    await asyncio.sleep(0.3)
    await runner.force_stop("operator request")

    with pytest.raises(TimerJobError, match="operator request"):
        await asyncio.wait_for(task, timeout=2)
    assert reporter.reports == []
    async with cell.read() as status:
        assert status.state == JobState.FAILED


@pytest.mark.asyncio
async def test_overrun_guard():
    runner, cell, hub, reporter = _setup(duration=1)
    # a job whose clock already ran far past its deadline while still starting
    async with cell.write() as status:
        status._start -= 40
    with pytest.raises(TimerJobError, match="exceeded maximum duration"):
        await asyncio.wait_for(runner.run(), timeout=2)
    assert reporter.reports == []
    async with cell.read() as status:
        assert status.state == JobState.FAILED
