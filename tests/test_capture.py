import unittest
from unittest import mock

import numpy as np

from overlay_kit import capture
from overlay_kit.capture import CaptureFrameSource, open_capture


class FakeCapture:
    def __init__(self, frames):
        self.frames = list(frames)
        self.pos = 0
        self.opened = True

    def isOpened(self) -> bool:
        return self.opened

    def read(self):
        if self.pos >= len(self.frames):
            return False, None
        frame = self.frames[self.pos]
        self.pos += 1
        return True, frame

    def set(self, prop, value) -> bool:
        self.pos = int(value)
        return True

    def release(self) -> None:
        self.opened = False


def _frames(n: int):
    return [np.full((4, 4, 3), i, dtype=np.uint8) for i in range(n)]


class TestCaptureFrameSource(unittest.TestCase):
    def test_goes_inactive_when_stream_ends(self) -> None:
        source = CaptureFrameSource(FakeCapture(_frames(2)))
        self.assertTrue(source.is_active)
        self.assertIsNotNone(source.read())
        self.assertIsNotNone(source.read())
        self.assertTrue(source.is_active)
        self.assertIsNone(source.read())
        self.assertFalse(source.is_active)

    def test_loop_video_rewinds(self) -> None:
        source = CaptureFrameSource(FakeCapture(_frames(2)), loop_video=True)
        values = [int(source.read()[0, 0, 0]) for _ in range(5)]
        self.assertEqual(values, [0, 1, 0, 1, 0])
        self.assertTrue(source.is_active)

    def test_last_frame_tracks_latest_read(self) -> None:
        source = CaptureFrameSource(FakeCapture(_frames(2)))
        source.read()
        second = source.read()
        self.assertIs(source.last_frame, second)

    def test_close_releases(self) -> None:
        cap = FakeCapture(_frames(1))
        source = CaptureFrameSource(cap)
        source.close()
        self.assertFalse(source.is_active)
        self.assertFalse(cap.opened)


class TestOpenCapture(unittest.TestCase):
    def test_exactly_one_source(self) -> None:
        with self.assertRaises(ValueError):
            open_capture()
        with self.assertRaises(ValueError):
            open_capture(video="a.mp4", webcam=0)



class TestLiveCaptureFrameSource(unittest.TestCase):
    def test_dropped_frame_keeps_live_source_active(self) -> None:
        cap = FakeCapture([])
        cap.read = _reads([(False, None), (True, np.ones((4, 4, 3), dtype=np.uint8))])
        source = CaptureFrameSource(cap, live=True)
        self.assertIsNone(source.read())
        self.assertTrue(source.is_active)
        self.assertIsNotNone(source.read())
        self.assertEqual(source.dropped, 0)

    def test_live_source_gives_up_after_consecutive_drops(self) -> None:
        cap = FakeCapture([])
        source = CaptureFrameSource(cap, live=True, max_dropped=3)
        for _ in range(2):
            self.assertIsNone(source.read())
            self.assertTrue(source.is_active)
        self.assertIsNone(source.read())
        self.assertFalse(source.is_active)

    def test_closed_live_capture_is_inactive(self) -> None:
        cap = FakeCapture(_frames(1))
        source = CaptureFrameSource(cap, live=True)
        cap.opened = False
        self.assertFalse(source.is_active)

    def test_max_dropped_validation(self) -> None:
        with self.assertRaises(ValueError):
            CaptureFrameSource(FakeCapture([]), live=True, max_dropped=0)


def _reads(results):
    pending = list(results)

    def read():
        return pending.pop(0) if pending else (False, None)

    return read


class FakeVideoCaptureFactory:
    """
    Stands in for `cv2.VideoCapture`; only the listed indices open.
    """

    def __init__(self, working):
        self.working = set(working)
        self.opened = []

    def __call__(self, index):
        self.opened.append(index)
        cap = FakeCapture(_frames(1))
        cap.opened = index in self.working
        return cap


class TestOpenCamera(unittest.TestCase):
    def test_falls_back_to_default_camera(self) -> None:
        factory = FakeVideoCaptureFactory(working={0})
        with mock.patch.object(capture.cv2, "VideoCapture", factory):
            with self.assertLogs("overlay_kit.capture", level="WARNING"):
                cap = capture.open_camera((2,))
        self.assertTrue(cap.isOpened())
        self.assertEqual(factory.opened, [2, 0])

    def test_preferred_camera_is_used_when_available(self) -> None:
        factory = FakeVideoCaptureFactory(working={0, 2})
        with mock.patch.object(capture.cv2, "VideoCapture", factory):
            capture.open_camera((2,))
        self.assertEqual(factory.opened, [2])

    def test_no_camera_raises(self) -> None:
        factory = FakeVideoCaptureFactory(working=set())
        with mock.patch.object(capture.cv2, "VideoCapture", factory):
            with self.assertRaises(RuntimeError):
                capture.open_camera((1,))
        self.assertEqual(factory.opened, [1, 0])

    def test_open_capture_webcam_goes_through_fallback(self) -> None:
        factory = FakeVideoCaptureFactory(working={0})
        with mock.patch.object(capture.cv2, "VideoCapture", factory):
            with self.assertLogs("overlay_kit.capture", level="WARNING"):
                capture.open_capture(webcam=5)
        self.assertEqual(factory.opened, [5, 0])


if __name__ == "__main__":
    unittest.main()
