from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Detection:
    """
    One detected object in source-frame pixel coordinates.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int
    class_name: str = ""

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Record of how one frame was fitted into the square model input.

    Produced by `letterbox()` and consumed by the remapper for the same frame.
    """

    scale: float
    pad_x: int
    pad_y: int
    source_size: Tuple[int, int] = (0, 0)  # (width, height)
    target_size: int = 0


@dataclass(frozen=True)
class RegionOfInterest:
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    def as_xyxy(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.x + self.width, self.y + self.height


@dataclass(frozen=True)
class ClassificationResult:
    probabilities: np.ndarray
    class_id: int
    class_name: str
    score: float
    region: Optional[RegionOfInterest] = None
