import asyncio
import threading
import time
from datetime import timedelta

import pytest

from classroom_monitor.exceptions import ClassNotFound
from classroom_monitor.frame import Frame, LatestFrameSource, StaticFrameSource
from classroom_monitor.models import CycleResult
from classroom_monitor.monitor import DetectionMonitor
from classroom_monitor.monitoring import SOURCE_TTL, MonitorRegistry
from conftest import blank_pixels


class FakeSession:
    class_id = "math"

    def __init__(self, analyze_seconds=0.0, fail=False):
        self.analyze_seconds = analyze_seconds
        self.fail = fail
        self.committed = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = threading.Event()
        self.release = None
        self._lock = threading.Lock()

    def analyze(self, frame):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.release is not None:
                self.release.wait(2)
            time.sleep(self.analyze_seconds)
            if self.fail:
                raise RuntimeError("scan failed")
            return CycleResult(class_id=self.class_id)
        finally:
            with self._lock:
                self.in_flight -= 1

    def commit(self, result):
        self.committed.append(result)


def _frame():
    return Frame(blank_pixels(10, 10))


def test_run_cycle_commits_and_delivers():
    session = FakeSession()
    delivered = []

    async def on_result(result):
        delivered.append(result)

    monitor = DetectionMonitor(session, StaticFrameSource(_frame()), interval_ms=10, on_result=on_result)
    result = asyncio.run(monitor.run_cycle())

    assert session.committed == [result]
    assert delivered == [result]
    assert monitor.cycles_run == 1


def test_run_cycle_skips_without_frame():
    session = FakeSession()
    monitor = DetectionMonitor(session, LatestFrameSource(), interval_ms=10)

    assert asyncio.run(monitor.run_cycle()) is None
    assert monitor.cycles_skipped == 1
    assert session.committed == []


def test_run_cycle_logs_scan_errors():
    session = FakeSession(fail=True)
    monitor = DetectionMonitor(session, StaticFrameSource(_frame()), interval_ms=10)

    assert asyncio.run(monitor.run_cycle()) is None
    assert session.committed == []


def test_delivery_failure_does_not_undo_commit():
    session = FakeSession()

    async def on_result(result):
        raise ConnectionError("socket closed")

    monitor = DetectionMonitor(session, StaticFrameSource(_frame()), interval_ms=10, on_result=on_result)
    asyncio.run(monitor.run_cycle())

    assert len(session.committed) == 1


def test_stop_discards_in_flight_cycle():
    session = FakeSession()
    session.release = threading.Event()
    monitor = DetectionMonitor(session, StaticFrameSource(_frame()), interval_ms=10)

    async def scenario():
        cycle = asyncio.create_task(monitor.run_cycle())
        await asyncio.to_thread(session.started.wait, 2)
        await monitor.stop()
        session.release.set()
        return await cycle

    assert asyncio.run(scenario()) is None
    assert session.committed == []


def test_loop_runs_cycles_until_stopped():
    session = FakeSession()
    monitor = DetectionMonitor(session, StaticFrameSource(_frame()), interval_ms=10)

    async def scenario():
        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.2)
        await monitor.stop()
        return len(session.committed)

    committed = asyncio.run(scenario())

    assert committed >= 2
    assert not monitor.running
    # Nothing is committed once stopped
    assert len(session.committed) == committed


def test_overrunning_cycles_skip_ticks():
    session = FakeSession(analyze_seconds=0.05)
    monitor = DetectionMonitor(session, StaticFrameSource(_frame()), interval_ms=10)

    async def scenario():
        monitor.start()
        await asyncio.sleep(0.3)
        await monitor.stop()

    asyncio.run(scenario())

    assert monitor.ticks_skipped > 0
    assert session.max_in_flight == 1
    assert monitor.cycles_run < 30


def test_concurrent_starts_share_one_loop(service, add_class):
    add_class("math")
    service.start_session("math")
    registry = MonitorRegistry()

    def loops():
        return [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]

    async def scenario():
        first, second = await asyncio.gather(
            registry.start(service, "math"),
            registry.start(service, "math"),
        )
        running = len(loops())
        stopped = await registry.stop("math")
        return first, second, running, stopped, len(loops())

    first, second, running, stopped, remaining = asyncio.run(scenario())

    assert first is second
    assert running == 1
    assert stopped
    assert remaining == 0
    assert not registry.is_running("math")


def test_stop_waits_for_pending_start(service, add_class):
    add_class("math")
    service.start_session("math")
    registry = MonitorRegistry()

    async def scenario():
        starting = asyncio.ensure_future(registry.start(service, "math"))
        # Let the start claim the class and begin its roster refresh
        await asyncio.sleep(0)
        stopped = await registry.stop("math")
        monitor = await starting
        return stopped, monitor

    stopped, monitor = asyncio.run(scenario())

    assert stopped
    assert not monitor.running
    assert registry.get("math") is None


def test_failed_start_releases_class(service):
    registry = MonitorRegistry()

    with pytest.raises(ClassNotFound):
        asyncio.run(registry.start(service, "chemistry"))

    assert registry.get("chemistry") is None
    assert not registry._starting


def test_idle_frame_sources_expire():
    registry = MonitorRegistry()
    idle = registry.source("ghost")
    idle.updated_at -= timedelta(seconds=SOURCE_TTL + 1)

    fresh = registry.source("math")

    assert "ghost" not in registry.sources
    assert registry.source("math") is fresh
