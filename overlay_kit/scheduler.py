from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Union

import numpy as np

from .errors import EmptyFrameError
from .runtime import FrameResult


logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    @property
    def is_active(self) -> bool: ...

    def read(self) -> Optional[np.ndarray]: ...


class FramePipeline(Protocol):
    @property
    def ready(self) -> bool: ...

    async def process(self, frame: np.ndarray) -> FrameResult: ...


ResultCallback = Callable[[FrameResult], Union[None, Awaitable[None]]]


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class CycleOutcome(str, enum.Enum):
    PROCESSED = "processed"
    SOURCE_INACTIVE = "source_inactive"
    NOT_READY = "not_ready"
    INVALID_FRAME = "invalid_frame"
    FAILED = "failed"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class SchedulerConfig:
    # Delay between cycles; also the re-poll interval while the model is loading.
    frame_interval_s: float = 1.0 / 30.0

    def __post_init__(self) -> None:
        if self.frame_interval_s < 0:
            raise ValueError("frame_interval_s must be >= 0")


class FrameScheduler:
    """
    Drives the per-frame cycle: read frame -> pipeline -> publish result.

    Lifecycle is Idle -> Running -> Idle. `start()` spawns one asyncio task;
    `stop()` sets the cancellation token. A cycle runs to completion (model call
    included) before the next one is scheduled, so inference never overlaps.
    An in-flight model call is not aborted on stop; its result is dropped.

    Nothing in a cycle is fatal: unready models and bad frames are skipped,
    exceptions are logged and surfaced through `status`, and the loop carries on.
    The loop ends by itself once the frame source goes inactive.
    """

    def __init__(
        self,
        source: FrameSource,
        pipeline: FramePipeline,
        *,
        cfg: SchedulerConfig = SchedulerConfig(),
        on_result: Optional[ResultCallback] = None,
    ):
        self.source = source
        self.pipeline = pipeline
        self.cfg = cfg
        self.on_result = on_result
        self.status = "Idle"
        self.frames_processed = 0
        self._latest: Optional[FrameResult] = None
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self.is_running else SchedulerState.IDLE

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def latest(self) -> Optional[FrameResult]:
        """
        Most recent result; replaced wholesale each cycle, never mutated.
        """

        return self._latest

    def start(self) -> None:
        """
        Idle -> Running. Must be called from inside a running event loop.

        Calling `start()` after `stop()` while the previous cycle is still
        in flight revives that loop instead of spawning a second one.
        """

        if self.is_running:
            if self._stop.is_set():
                self._stop.clear()
                self.status = "Active"
                logger.info("Frame scheduler restarted before the previous cycle finished")
            return
        self._stop = asyncio.Event()
        self.status = "Active"
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Frame scheduler started (interval=%.4fs)", self.cfg.frame_interval_s)

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        logger.info("Frame scheduler stop requested")

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await self._task

    async def run_cycle(self) -> CycleOutcome:
        """
        One pass of the frame cycle. Never raises for per-frame failures.
        """

        try:
            if not self.source.is_active:
                return CycleOutcome.SOURCE_INACTIVE

            if not self.pipeline.ready:
                self.status = "Waiting for model"
                return CycleOutcome.NOT_READY

            frame = self.source.read()
            if frame is None or getattr(frame, "size", 0) == 0:
                return CycleOutcome.INVALID_FRAME

            result = await self.pipeline.process(frame)
        except EmptyFrameError as exc:
            logger.debug("Skipping frame: %s", exc)
            return CycleOutcome.INVALID_FRAME
        except Exception as exc:
            logger.exception("Inference error")
            self.status = f"Inference error: {exc}"
            return CycleOutcome.FAILED

        if self._stop.is_set():
            return CycleOutcome.DISCARDED

        self._latest = result
        self.frames_processed += 1
        self.status = "Active"
        if self.on_result is not None:
            try:
                ret = self.on_result(result)
                if asyncio.iscoroutine(ret):
                    await ret
            except Exception as exc:
                logger.exception("Result callback failed")
                self.status = f"Render error: {exc}"
                return CycleOutcome.FAILED
        return CycleOutcome.PROCESSED

    async def _run(self) -> None:
        try:
            while not self._stop.is_set():
                outcome = await self.run_cycle()
                if outcome is CycleOutcome.SOURCE_INACTIVE:
                    logger.info("Frame source inactive; scheduler returning to idle")
                    break
                await self._sleep()
        finally:
            self.status = "Idle"
            logger.info("Frame scheduler stopped after %d frame(s)", self.frames_processed)

    async def _sleep(self) -> None:
        # Wake early when stop() is called.
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.cfg.frame_interval_s)
        except asyncio.TimeoutError:
            pass
