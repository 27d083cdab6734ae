from __future__ import annotations

from dataclasses import replace
from typing import List, Sequence, Tuple

import numpy as np

from .labels import LabelList
from .types import Detection, LetterboxTransform


def remap_point(x: float, y: float, transform: LetterboxTransform) -> Tuple[float, float]:
    """
    Tensor-space point -> source-frame point (undo padding, then undo scale).
    """

    return (x - transform.pad_x) / transform.scale, (y - transform.pad_y) / transform.scale


def remap_boxes(boxes: np.ndarray, transform: LetterboxTransform) -> np.ndarray:
    """
    Map xyxy boxes from the letterboxed tensor back onto the source frame.

    Only x1/y1 are clamped (to 0). Clipping against the frame's right/bottom edge
    is left to the renderer.
    """

    out = np.array(boxes, dtype=np.float64).reshape(-1, 4)
    out[:, [0, 2]] = (out[:, [0, 2]] - transform.pad_x) / transform.scale
    out[:, [1, 3]] = (out[:, [1, 3]] - transform.pad_y) / transform.scale
    out[:, 0] = np.maximum(out[:, 0], 0.0)
    out[:, 1] = np.maximum(out[:, 1], 0.0)
    return out


def to_detections(
    boxes: np.ndarray,
    scores: np.ndarray,
    class_ids: np.ndarray,
    transform: LetterboxTransform,
    labels: LabelList,
) -> List[Detection]:
    mapped = remap_boxes(boxes, transform)
    return [
        Detection(
            x1=float(x1),
            y1=float(y1),
            x2=float(x2),
            y2=float(y2),
            score=float(score),
            class_id=int(cls_id),
            class_name=labels.name_for(int(cls_id)),
        )
        for (x1, y1, x2, y2), score, cls_id in zip(mapped, scores, class_ids)
    ]


def scale_to_display(
    detections: Sequence[Detection],
    source_size: Tuple[int, int],
    display_size: Tuple[int, int],
) -> List[Detection]:
    """
    Rescale source-frame detections onto a display surface of another size.

    Sizes are (width, height).
    """

    src_w, src_h = source_size
    dst_w, dst_h = display_size
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"source_size must be positive, got {source_size}")
    sx = dst_w / src_w
    sy = dst_h / src_h
    if sx == 1.0 and sy == 1.0:
        return list(detections)
    return [replace(d, x1=d.x1 * sx, y1=d.y1 * sy, x2=d.x2 * sx, y2=d.y2 * sy) for d in detections]
