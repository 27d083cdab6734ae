from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .types import RegionOfInterest


PathLike = Union[str, Path]

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"


@dataclass(frozen=True)
class CascadeConfig:
    """
    Parameters forwarded to `cv2.CascadeClassifier.detectMultiScale`.
    """

    cascade_path: Optional[str] = None  # None -> OpenCV's bundled frontal face cascade
    scale_factor: float = 1.1
    min_neighbors: int = 5
    min_size: Tuple[int, int] = (30, 30)

    def __post_init__(self) -> None:
        if self.scale_factor <= 1.0:
            raise ValueError("scale_factor must be > 1.0")
        if self.min_neighbors < 0:
            raise ValueError("min_neighbors must be >= 0")


def largest_region(rects: Iterable[Sequence[int]]) -> Optional[RegionOfInterest]:
    """
    Pick the (x, y, w, h) rectangle with the largest area; first one wins ties.
    """

    best: Optional[RegionOfInterest] = None
    for r in rects:
        x, y, w, h = (int(v) for v in r[:4])
        if w <= 0 or h <= 0:
            continue
        cand = RegionOfInterest(x=x, y=y, width=w, height=h)
        if best is None or cand.area > best.area:
            best = cand
    return best


def crop_region(frame: np.ndarray, region: RegionOfInterest) -> np.ndarray:
    """
    Crop `region` out of `frame`, clipped to the frame bounds.
    """

    h, w = frame.shape[:2]
    x1, y1, x2, y2 = region.as_xyxy()
    x1, y1 = max(0, x1), max(0, y1)
    x2, y2 = min(w, x2), min(h, y2)
    return frame[y1:y2, x1:x2]


class CascadeRoiDetector:
    """
    Finds candidate subject regions (faces by default) with an OpenCV Haar cascade.
    """

    def __init__(self, cfg: CascadeConfig = CascadeConfig()):
        try:
            import cv2  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("OpenCV is required for CascadeRoiDetector. Install with `pip install opencv-python`.") from e

        self._cv2 = cv2
        self.cfg = cfg
        path = cfg.cascade_path or str(Path(cv2.data.haarcascades) / DEFAULT_CASCADE)
        if not Path(path).exists():
            raise FileNotFoundError(f"Cascade file not found: {path}")
        self.classifier = cv2.CascadeClassifier(path)
        if self.classifier.empty():
            raise RuntimeError(f"Failed to load cascade: {path}")

    @property
    def ready(self) -> bool:
        return not self.classifier.empty()

    def detect(self, frame: np.ndarray) -> List[RegionOfInterest]:
        cv2 = self._cv2
        gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        rects = self.classifier.detectMultiScale(
            gray,
            scaleFactor=self.cfg.scale_factor,
            minNeighbors=self.cfg.min_neighbors,
            minSize=self.cfg.min_size,
        )
        return [RegionOfInterest(x=int(x), y=int(y), width=int(w), height=int(h)) for (x, y, w, h) in rects]

    def __call__(self, frame: np.ndarray) -> Optional[RegionOfInterest]:
        return largest_region((r.x, r.y, r.width, r.height) for r in self.detect(frame))
