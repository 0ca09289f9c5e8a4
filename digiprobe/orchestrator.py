"""Test orchestrator: sequences probe cycles into a static or drive test run.

Lifecycle::

    ready --start()--> recording --stop() / static loops exhausted--> stopping
    stopping --settle delay--> saved --reset()--> ready

A run whose task is cancelled still ends in ``saved``, but the completion
callback is not invoked for it.

Samples are delivered to a single sink in loop order; each delivery is
awaited before the next probe cycle begins. Cancellation is cooperative and
observed between iterations only, so an in-flight probe cycle always
completes and is delivered.
"""
import asyncio
import contextlib
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from digiprobe.geolocation import Locator, NullLocator, capture_position
from digiprobe.models import Metrics, OrchestratorConfig, RunStatus, Sample, TestMode
from digiprobe.probes import Probes
from digiprobe.wakelock import NullWakeLock, WakeLock

logger = logging.getLogger(__name__)

SampleSink = Callable[[Sample], Any]
CompletionCallback = Callable[[], Any]
StatusListener = Callable[[RunStatus], None]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


async def _call(callback: Callable, *args) -> Any:
    """Invoke a sync or async callback and return its result."""
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class TestOrchestrator:
    """Runs probe cycles for one test mode and owns the run state."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        mode: TestMode,
        probes: Probes,
        on_sample: Optional[SampleSink] = None,
        on_complete: Optional[CompletionCallback] = None,
        locator: Optional[Locator] = None,
        wake_lock: Optional[WakeLock] = None,
        config: Optional[OrchestratorConfig] = None,
        on_status: Optional[StatusListener] = None,
    ) -> None:
        self.mode = TestMode(mode)
        self.probes = probes
        self.on_sample = on_sample
        self.on_complete = on_complete
        self.locator = locator or NullLocator()
        self.wake_lock = wake_lock or NullWakeLock()
        self.config = config or OrchestratorConfig()
        self.on_status = on_status

        self._status = RunStatus.READY
        self._loop_count = 0
        self._current_metrics: Optional[Metrics] = None
        self._running = False
        self._cancel: Optional[asyncio.Event] = None
        self._done: Optional[asyncio.Event] = None
        self._wake_held = False

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def loop_count(self) -> int:
        return self._loop_count

    @property
    def current_metrics(self) -> Optional[Metrics]:
        return self._current_metrics

    @property
    def is_running(self) -> bool:
        return self._running

    def snapshot(self) -> dict:
        return {
            "status": self._status.value,
            "test_mode": self.mode.value,
            "loop_count": self._loop_count,
            "is_running": self._running,
            "current_metrics": (
                self._current_metrics.to_dict() if self._current_metrics else None
            ),
        }

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run a full test sequence; returns once the run has been saved.

        Calling this while a sequence is already running does nothing.
        """
        if self._running:
            logger.debug("start() ignored — test already running")
            return

        mode = self.mode
        self._running = True
        self._loop_count = 0
        self._set_status(RunStatus.RECORDING)
        self._cancel = asyncio.Event()
        self._done = asyncio.Event()
        logger.info("Starting %s test", mode.value)

        try:
            with self._wake_hold(mode):
                await self._run_loop(mode)

            self._set_status(RunStatus.STOPPING)
            await asyncio.sleep(self.config.settle_seconds)
            self._set_status(RunStatus.SAVED)
            logger.info("Test saved after %d runs", self._loop_count)
            await self._notify_complete()
        finally:
            if self._status in (RunStatus.RECORDING, RunStatus.STOPPING):
                # Interrupted: samples already delivered stay saved, no completion callback.
                logger.warning("Test interrupted after %d runs", self._loop_count)
                self._set_status(RunStatus.STOPPING)
                self._set_status(RunStatus.SAVED)
            self._running = False
            self._done.set()

    def stop(self) -> None:
        """Request cancellation; the loop stops at its next iteration boundary."""
        if not self._running:
            logger.debug("stop() ignored — no test running")
            return
        if self._cancel is not None and not self._cancel.is_set():
            logger.info("Stop requested after %d runs", self._loop_count)
            self._cancel.set()
        if self._status is RunStatus.RECORDING:
            self._set_status(RunStatus.STOPPING)
        self._release_wake_lock()

    def reset(self) -> None:
        """Return to ``ready`` after a run; ignored while a run is in progress."""
        if self._running:
            logger.warning("reset() ignored — test still running")
            return
        self._loop_count = 0
        self._current_metrics = None
        self._set_status(RunStatus.READY)

    async def aclose(self) -> None:
        """Tear down: stop any running sequence and wait for it to finish.

        Must not be awaited from inside the sample sink or completion callback.
        """
        self.stop()
        self._release_wake_lock()
        if self._running and self._done is not None:
            await self._done.wait()

    async def __aenter__(self) -> "TestOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _set_status(self, status: RunStatus) -> None:
        if status is self._status:
            return
        logger.debug("Status %s -> %s", self._status.value, status.value)
        self._status = status
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception as exc:
                logger.exception("Status listener failed: %s", exc)

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    async def _run_loop(self, mode: TestMode) -> None:
        limit = self.config.static_loops if mode is TestMode.STATIC else None
        iteration = 0

        while limit is None or iteration < limit:
            if self._cancelled():
                logger.info("Test cancelled after %d runs", self._loop_count)
                break

            iteration += 1
            self._loop_count = iteration

            try:
                await self._run_once(mode, iteration)
            except Exception as exc:
                logger.exception("Test run %d failed: %s", iteration, exc)

            if mode is TestMode.STATIC:
                if iteration < limit:
                    await self._pause(self.config.static_pause_seconds)
            else:
                await self._pause(self.config.drive_pause_seconds)

    async def _run_once(self, mode: TestMode, iteration: int) -> None:
        logger.info("Run %d: probing…", iteration)
        metrics = await self.probes.run_cycle()
        self._current_metrics = metrics
        timestamp = _utcnow()

        position = None
        if mode is TestMode.DRIVE or iteration == 1:
            position = await capture_position(
                self.locator, self.config.geolocation_timeout_seconds
            )

        sample = Sample(metrics=metrics, timestamp=timestamp, position=position, loop=iteration)
        logger.info(
            "Run %d: %s (%s)",
            iteration,
            sample.category.value,
            sample.category_color.value,
        )
        if self.on_sample is None:
            return
        try:
            await _call(self.on_sample, sample)
        except Exception as exc:
            logger.exception("Sample handler failed for run %d: %s", iteration, exc)

    async def _pause(self, seconds: float) -> None:
        """Wait between iterations, waking early if a stop is requested."""
        if seconds <= 0 or self._cancel is None:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _notify_complete(self) -> None:
        if self.on_complete is None:
            return
        try:
            await _call(self.on_complete)
        except Exception as exc:
            logger.exception("Completion handler failed: %s", exc)

    # ------------------------------------------------------------------
    # Wake lock
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _wake_hold(self, mode: TestMode):
        if mode is TestMode.DRIVE:
            try:
                self.wake_lock.acquire()
                self._wake_held = True
                logger.info("Wake lock acquired")
            except Exception as exc:
                logger.warning("Wake lock not available: %s", exc)
        try:
            yield
        finally:
            self._release_wake_lock()

    def _release_wake_lock(self) -> None:
        if not self._wake_held:
            return
        self._wake_held = False
        try:
            self.wake_lock.release()
            logger.info("Wake lock released")
        except Exception as exc:
            logger.warning("Failed to release wake lock: %s", exc)
