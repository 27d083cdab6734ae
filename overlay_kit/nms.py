from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .types import Detection


IOU_EPS = 1e-6


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    # None keeps every surviving box.
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 (or None)")


def iou(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Intersection-over-Union of two xyxy boxes.
    """

    ix1 = max(a[0], b[0])
    iy1 = max(a[1], b[1])
    ix2 = min(a[2], b[2])
    iy2 = min(a[3], b[3])
    inter = max(0.0, ix2 - ix1) * max(0.0, iy2 - iy1)
    area_a = (a[2] - a[0]) * (a[3] - a[1])
    area_b = (b[2] - b[0]) * (b[3] - b[1])
    return float(inter / (area_a + area_b - inter + IOU_EPS))


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig = NMSConfig()) -> np.ndarray:
    """
    Greedy class-agnostic NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of kept boxes, highest score first.

    A box is suppressed when its IoU with an already kept box is strictly greater
    than the threshold. Equal scores keep their input order.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if boxes.shape[0] != scores.shape[0]:
        raise ValueError(f"boxes and scores disagree: {boxes.shape[0]} vs {scores.shape[0]}")
    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []
    limit = cfg.max_detections

    while order.size > 0 and (limit is None or len(keep) < limit):
        i = order[0]
        keep.append(int(i))
        rest = order[1:]

        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[rest] - inter
        overlap = inter / (union + IOU_EPS)

        order = rest[overlap <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


def nms_detections(detections: Sequence[Detection], cfg: NMSConfig = NMSConfig()) -> List[Detection]:
    if not detections:
        return []
    boxes = np.array([d.as_xyxy() for d in detections], dtype=np.float64)
    scores = np.array([d.score for d in detections], dtype=np.float64)
    return [detections[i] for i in nms(boxes, scores, cfg)]
