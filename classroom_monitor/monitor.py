import asyncio
import logging
from typing import Awaitable, Callable, Optional

from classroom_monitor.config import settings
from classroom_monitor.exceptions import FrameUnavailable
from classroom_monitor.models import CycleResult
from classroom_monitor.session import DetectionSession

logger = logging.getLogger(__name__)

ResultCallback = Callable[[CycleResult], Awaitable[None]]


class DetectionMonitor:
    """
    Periodic detection loop for one session.

    Cycles run one at a time. When a cycle overruns the interval, the ticks
    it covered are skipped rather than queued. ``stop`` takes effect
    immediately: a cycle still scanning is discarded before its commit.
    """

    def __init__(
        self,
        session: DetectionSession,
        source,
        interval_ms: Optional[int] = None,
        on_result: Optional[ResultCallback] = None,
    ):
        self.session = session
        self.source = source
        if interval_ms is None:
            interval_ms = settings.DETECTION_INTERVAL_MS
        self.interval = interval_ms / 1000
        self.on_result = on_result
        self.cycles_run = 0
        self.cycles_skipped = 0
        self.ticks_skipped = 0
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning(f"Monitor for class {self.session.class_id} already running")
            return
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Monitoring started for class {self.session.class_id} every {self.interval:.3f}s")

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(
            f"Monitoring stopped for class {self.session.class_id} "
            f"({self.cycles_run} cycles, {self.ticks_skipped} ticks skipped)"
        )

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while not self._stopped:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if self._stopped:
                break
            await self.run_cycle()

            next_tick += self.interval
            now = loop.time()
            if self.interval > 0 and now > next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                next_tick += missed * self.interval
                self.ticks_skipped += missed
                logger.warning(f"Detection cycle overran the interval, skipping {missed} tick(s)")

    async def run_cycle(self) -> Optional[CycleResult]:
        """Sample, scan and commit one frame. Never raises except on cancellation."""
        try:
            frame = self.source.get_frame()
        except FrameUnavailable as e:
            logger.debug(f"Skipping cycle: {e}")
            frame = None
        if frame is None:
            self.cycles_skipped += 1
            return None

        try:
            result = await asyncio.to_thread(self.session.analyze, frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Detection cycle error: {e}")
            return None

        # Results of a cycle that finished after stop() must not be applied
        if self._stopped:
            logger.debug("Monitor stopped during cycle, discarding results")
            return None

        self.session.commit(result)
        self.cycles_run += 1

        if self.on_result is not None:
            try:
                await self.on_result(result)
            except Exception as e:
                logger.error(f"Failed to deliver detection results: {e}")
        return result
