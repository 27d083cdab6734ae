from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import cv2
import numpy as np


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]


def open_camera(preferred: Sequence[int] = (0,)) -> cv2.VideoCapture:
    """
    Open the first camera index that works, falling back to the default camera (0).
    """

    tried = []
    for index in list(preferred) + [0]:
        if index in tried:
            continue
        tried.append(index)
        cap = cv2.VideoCapture(int(index))
        if cap.isOpened():
            if index != preferred[0]:
                logger.warning("Camera %s not available, falling back to camera %s", preferred[0], index)
            return cap
        cap.release()
    raise RuntimeError(f"Failed to open any camera (tried {tried}).")


def open_capture(
    *,
    video: Optional[str] = None,
    webcam: Optional[int] = None,
    rtsp: Optional[str] = None,
) -> cv2.VideoCapture:
    sources = [video is not None, webcam is not None, rtsp is not None]
    if sum(bool(s) for s in sources) != 1:
        raise ValueError("Exactly one of video/webcam/rtsp must be provided.")

    if webcam is not None:
        return open_camera((int(webcam),))

    cap = cv2.VideoCapture(video if video is not None else rtsp)
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video source: {video or rtsp}")
    return cap


def get_capture_info(cap: cv2.VideoCapture) -> CaptureInfo:
    fps = cap.get(cv2.CAP_PROP_FPS)
    fps_val = float(fps) if fps and fps > 0 else None

    w = cap.get(cv2.CAP_PROP_FRAME_WIDTH)
    h = cap.get(cv2.CAP_PROP_FRAME_HEIGHT)
    w_val = int(w) if w and w > 0 else None
    h_val = int(h) if h and h > 0 else None

    return CaptureInfo(fps=fps_val, width=w_val, height=h_val)


class CaptureFrameSource:
    """
    Adapts a `cv2.VideoCapture` to the scheduler's frame-source protocol.

    File sources go inactive at end of stream (unless `loop_video`). Live
    sources (`live=True`) treat a failed read as a dropped frame and only go
    inactive once the capture closes or `max_dropped` reads fail in a row.
    `close()` always ends the source.
    """

    def __init__(
        self,
        cap: cv2.VideoCapture,
        *,
        loop_video: bool = False,
        live: bool = False,
        max_dropped: int = 30,
    ):
        if max_dropped < 1:
            raise ValueError("max_dropped must be >= 1")
        self.cap = cap
        self.loop_video = loop_video
        self.live = live
        self.max_dropped = int(max_dropped)
        self.dropped = 0
        self._ended = False
        self.last_frame: Optional[np.ndarray] = None

    @property
    def is_active(self) -> bool:
        return not self._ended and self.cap.isOpened()

    def read(self) -> Optional[np.ndarray]:
        ok, frame = self.cap.read()
        if (not ok or frame is None) and self.loop_video and not self.live:
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, frame = self.cap.read()
        if not ok or frame is None:
            self.dropped += 1
            if not self.live:
                self._ended = True
            elif self.dropped >= self.max_dropped:
                logger.warning("Live source dropped %d frames in a row; giving up", self.dropped)
                self._ended = True
            return None
        self.dropped = 0
        self.last_frame = frame
        return frame

    def close(self) -> None:
        self._ended = True
        self.cap.release()
