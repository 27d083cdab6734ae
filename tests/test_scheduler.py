import asyncio
import unittest
from typing import List, Optional

import numpy as np

from overlay_kit.runtime import FrameResult
from overlay_kit.scheduler import CycleOutcome, FrameScheduler, SchedulerConfig, SchedulerState

FAST = SchedulerConfig(frame_interval_s=0.001)


class FakeSource:
    def __init__(self, frames: List[Optional[np.ndarray]], stay_active: bool = False):
        self.frames = list(frames)
        self.stay_active = stay_active
        self.reads = 0

    @property
    def is_active(self) -> bool:
        return self.stay_active or self.reads < len(self.frames)

    def read(self) -> Optional[np.ndarray]:
        if self.reads >= len(self.frames):
            return np.zeros((4, 4, 3), dtype=np.uint8)
        frame = self.frames[self.reads]
        self.reads += 1
        return frame


class FakePipeline:
    def __init__(self, ready: bool = True, fail_on: int = 0, delay_s: float = 0.0):
        self.ready = ready
        self.fail_on = fail_on
        self.delay_s = delay_s
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def process(self, frame: np.ndarray) -> FrameResult:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            if self.calls == self.fail_on:
                raise RuntimeError("model exploded")
            h, w = frame.shape[:2]
            return FrameResult(source_size=(w, h))
        finally:
            self.in_flight -= 1


def _frames(n: int) -> List[np.ndarray]:
    return [np.full((8 + i, 8, 3), i, dtype=np.uint8) for i in range(n)]


class TestRunCycle(unittest.IsolatedAsyncioTestCase):
    async def test_processed_cycle_publishes_result(self) -> None:
        seen = []
        sched = FrameScheduler(FakeSource(_frames(1)), FakePipeline(), cfg=FAST, on_result=seen.append)
        self.assertEqual(await sched.run_cycle(), CycleOutcome.PROCESSED)
        self.assertEqual(sched.latest.source_size, (8, 8))
        self.assertEqual(len(seen), 1)
        self.assertEqual(sched.frames_processed, 1)

    async def test_unready_model_is_skipped_without_error(self) -> None:
        pipe = FakePipeline(ready=False)
        source = FakeSource(_frames(1))
        sched = FrameScheduler(source, pipe, cfg=FAST)
        self.assertEqual(await sched.run_cycle(), CycleOutcome.NOT_READY)
        self.assertEqual(pipe.calls, 0)
        self.assertEqual(source.reads, 0)
        self.assertEqual(sched.status, "Waiting for model")

    async def test_invalid_frames_skip_the_model(self) -> None:
        pipe = FakePipeline()
        sched = FrameScheduler(FakeSource([None, np.zeros((0, 10, 3), dtype=np.uint8)]), pipe, cfg=FAST)
        self.assertEqual(await sched.run_cycle(), CycleOutcome.INVALID_FRAME)
        self.assertEqual(await sched.run_cycle(), CycleOutcome.INVALID_FRAME)
        self.assertEqual(pipe.calls, 0)

    async def test_failure_surfaces_status_and_next_cycle_runs(self) -> None:
        sched = FrameScheduler(FakeSource(_frames(3)), FakePipeline(fail_on=2), cfg=FAST)
        outcomes = [await sched.run_cycle() for _ in range(3)]
        self.assertEqual(outcomes, [CycleOutcome.PROCESSED, CycleOutcome.FAILED, CycleOutcome.PROCESSED])
        self.assertEqual(sched.frames_processed, 2)
        self.assertEqual(sched.latest.source_size, (8, 10))

    async def test_failure_status_text(self) -> None:
        sched = FrameScheduler(FakeSource(_frames(1)), FakePipeline(fail_on=1), cfg=FAST)
        with self.assertLogs("overlay_kit.scheduler", level="ERROR"):
            await sched.run_cycle()
        self.assertEqual(sched.status, "Inference error: model exploded")
        self.assertIsNone(sched.latest)

    async def test_source_errors_are_caught(self) -> None:
        class FlakySource(FakeSource):
            def read(self):
                if self.reads == 1:
                    self.reads += 1
                    raise RuntimeError("camera glitch")
                return super().read()

        sched = FrameScheduler(FlakySource(_frames(3)), FakePipeline(), cfg=FAST)
        with self.assertLogs("overlay_kit.scheduler", level="ERROR"):
            outcomes = [await sched.run_cycle() for _ in range(3)]
        self.assertEqual(outcomes, [CycleOutcome.PROCESSED, CycleOutcome.FAILED, CycleOutcome.PROCESSED])
        self.assertEqual(sched.status, "Active")

    async def test_readiness_errors_are_caught(self) -> None:
        class BrokenPipeline(FakePipeline):
            @property
            def ready(self) -> bool:
                raise RuntimeError("backend gone")

            @ready.setter
            def ready(self, value) -> None:
                pass

        sched = FrameScheduler(FakeSource(_frames(1)), BrokenPipeline(), cfg=FAST)
        with self.assertLogs("overlay_kit.scheduler", level="ERROR"):
            self.assertEqual(await sched.run_cycle(), CycleOutcome.FAILED)
        self.assertEqual(sched.status, "Inference error: backend gone")

    async def test_callback_failure_surfaces_render_status(self) -> None:
        def on_result(result: FrameResult) -> None:
            raise ValueError("bad surface")

        sched = FrameScheduler(FakeSource(_frames(2)), FakePipeline(), cfg=FAST, on_result=on_result)
        with self.assertLogs("overlay_kit.scheduler", level="ERROR"):
            self.assertEqual(await sched.run_cycle(), CycleOutcome.FAILED)
        self.assertEqual(sched.status, "Render error: bad surface")
        self.assertEqual(sched.frames_processed, 1)
        self.assertIsNotNone(sched.latest)

    async def test_inactive_source(self) -> None:
        sched = FrameScheduler(FakeSource([]), FakePipeline(), cfg=FAST)
        self.assertEqual(await sched.run_cycle(), CycleOutcome.SOURCE_INACTIVE)


class TestLifecycle(unittest.IsolatedAsyncioTestCase):
    async def test_runs_until_source_ends_then_idles(self) -> None:
        pipe = FakePipeline()
        sched = FrameScheduler(FakeSource(_frames(3)), pipe, cfg=FAST)
        self.assertEqual(sched.state, SchedulerState.IDLE)
        sched.start()
        self.assertTrue(sched.is_running)
        self.assertEqual(sched.state, SchedulerState.RUNNING)
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertFalse(sched.is_running)
        self.assertEqual(sched.state, SchedulerState.IDLE)
        self.assertEqual(sched.status, "Idle")
        self.assertEqual(pipe.calls, 3)
        self.assertEqual(sched.latest.source_size, (8, 10))

    async def test_cycles_never_overlap(self) -> None:
        pipe = FakePipeline(delay_s=0.005)
        sched = FrameScheduler(FakeSource(_frames(5)), pipe, cfg=SchedulerConfig(frame_interval_s=0.0))
        sched.start()
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertEqual(pipe.calls, 5)
        self.assertEqual(pipe.max_in_flight, 1)

    async def test_unready_model_keeps_polling(self) -> None:
        pipe = FakePipeline(ready=False)
        sched = FrameScheduler(FakeSource(_frames(1), stay_active=True), pipe, cfg=FAST)
        sched.start()
        await asyncio.sleep(0.02)
        self.assertTrue(sched.is_running)
        pipe.ready = True
        for _ in range(200):
            if sched.frames_processed:
                break
            await asyncio.sleep(0.005)
        self.assertGreaterEqual(sched.frames_processed, 1)
        sched.stop()
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)

    async def test_errors_do_not_stop_the_loop(self) -> None:
        pipe = FakePipeline(fail_on=1)
        sched = FrameScheduler(FakeSource(_frames(3)), pipe, cfg=FAST)
        with self.assertLogs("overlay_kit.scheduler", level="ERROR"):
            sched.start()
            await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertEqual(pipe.calls, 3)
        self.assertEqual(sched.frames_processed, 2)

    async def test_stop_drops_in_flight_result(self) -> None:
        gate = asyncio.Event()
        entered = asyncio.Event()

        class GatedPipeline(FakePipeline):
            async def process(self, frame):
                entered.set()
                await gate.wait()
                return await super().process(frame)

        seen = []
        sched = FrameScheduler(
            FakeSource(_frames(1), stay_active=True), GatedPipeline(), cfg=FAST, on_result=seen.append
        )
        sched.start()
        await asyncio.wait_for(entered.wait(), timeout=5)
        sched.stop()
        gate.set()
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertIsNone(sched.latest)
        self.assertEqual(seen, [])
        self.assertFalse(sched.is_running)

    async def test_loop_survives_a_failing_source_read(self) -> None:
        class FlakySource(FakeSource):
            def read(self):
                if self.reads == 1:
                    self.reads += 1
                    raise RuntimeError("camera glitch")
                return super().read()

        pipe = FakePipeline()
        sched = FrameScheduler(FlakySource(_frames(5)), pipe, cfg=FAST)
        with self.assertLogs("overlay_kit.scheduler", level="ERROR"):
            sched.start()
            await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertEqual(pipe.calls, 4)
        self.assertEqual(sched.frames_processed, 4)
        self.assertEqual(sched.status, "Idle")

    async def test_restart_while_cycle_in_flight_keeps_running(self) -> None:
        gate = asyncio.Event()
        entered = asyncio.Event()

        class GatedPipeline(FakePipeline):
            async def process(self, frame):
                if self.calls == 0:
                    entered.set()
                    await gate.wait()
                return await super().process(frame)

        pipe = GatedPipeline()
        sched = FrameScheduler(FakeSource(_frames(3)), pipe, cfg=FAST)
        sched.start()
        task = sched._task
        await asyncio.wait_for(entered.wait(), timeout=5)
        sched.stop()
        sched.start()
        self.assertIs(sched._task, task)
        gate.set()
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertEqual(pipe.calls, 3)
        self.assertEqual(sched.frames_processed, 3)

    async def test_async_callback_is_awaited(self) -> None:
        seen = []

        async def on_result(result: FrameResult) -> None:
            await asyncio.sleep(0)
            seen.append(result.source_size)

        sched = FrameScheduler(FakeSource(_frames(2)), FakePipeline(), cfg=FAST, on_result=on_result)
        sched.start()
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertEqual(seen, [(8, 8), (8, 9)])

    async def test_start_twice_is_a_noop_and_restart_works(self) -> None:
        source = FakeSource(_frames(2), stay_active=True)
        sched = FrameScheduler(source, FakePipeline(), cfg=FAST)
        sched.start()
        task = sched._task
        sched.start()
        self.assertIs(sched._task, task)
        sched.stop()
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)
        self.assertFalse(sched.is_running)

        sched.start()
        self.assertTrue(sched.is_running)
        sched.stop()
        await asyncio.wait_for(sched.wait_stopped(), timeout=5)


class TestSchedulerConfig(unittest.TestCase):
    def test_negative_interval_rejected(self) -> None:
        with self.assertRaises(ValueError):
            SchedulerConfig(frame_interval_s=-1)


if __name__ == "__main__":
    unittest.main()
