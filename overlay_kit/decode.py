from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import DecodeError
from .types import LetterboxTransform


logger = logging.getLogger(__name__)


class OutputLayout(str, enum.Enum):
    # (1, 4 + C, N): one row per feature, e.g. 10 x 8400 for a 6-class YOLO export
    FEATURES_FIRST = "features_first"
    # (1, N, 4 + C): one row per candidate
    CANDIDATES_FIRST = "candidates_first"


@dataclass(frozen=True)
class DecodeConfig:
    conf_threshold: float = 0.25
    # None -> infer from the output shape (larger trailing axis = candidates).
    layout: Optional[OutputLayout] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be within [0, 1]")
        if self.layout is not None and not isinstance(self.layout, OutputLayout):
            object.__setattr__(self, "layout", OutputLayout(self.layout))


@dataclass(frozen=True)
class Candidates:
    """
    Decoded candidates before NMS, still in letterboxed tensor coordinates.
    """

    boxes: np.ndarray  # (N, 4) xyxy
    scores: np.ndarray  # (N,)
    class_ids: np.ndarray  # (N,)

    def __len__(self) -> int:
        return int(self.scores.shape[0])


def _check_shape(shape: Sequence[int]) -> Tuple[int, int, int]:
    if len(shape) != 3:
        raise DecodeError(f"Expected a 3-D output (1, a, b), got shape {tuple(shape)}")
    batch, a, b = (int(s) for s in shape)
    if batch != 1:
        raise DecodeError(f"Batch > 1 is not supported (got shape {tuple(shape)}). Pass one image at a time.")
    return batch, a, b


def infer_layout(shape: Sequence[int]) -> OutputLayout:
    """
    Guess which trailing axis holds candidates.

    Anchor counts (thousands) dwarf `4 + num_classes`, so the larger axis is taken
    as the candidate axis. A model emitting fewer candidates than features breaks
    this guess; pass an explicit layout for such models.
    """

    _, a, b = _check_shape(shape)
    if a < b:
        return OutputLayout.FEATURES_FIRST
    if a == b:
        logger.warning(
            "Output shape %s is ambiguous (equal trailing axes); assuming %s. "
            "Set an explicit layout to silence this.",
            tuple(shape),
            OutputLayout.CANDIDATES_FIRST.value,
        )
    return OutputLayout.CANDIDATES_FIRST


def _empty() -> Candidates:
    return Candidates(
        boxes=np.empty((0, 4), dtype=np.float64),
        scores=np.empty((0,), dtype=np.float64),
        class_ids=np.empty((0,), dtype=np.int64),
    )


def decode_detections(
    output: np.ndarray,
    cfg: DecodeConfig = DecodeConfig(),
    transform: Optional[LetterboxTransform] = None,
) -> Candidates:
    """
    Turn a raw detection output into thresholded xyxy candidates.

    Per candidate the best class is found by arg-max (ties go to the lowest class
    id). Candidates scoring below `cfg.conf_threshold` are dropped; a score equal
    to the threshold is kept.

    Boxes lying entirely in the top/left letterbox margin (x2 <= pad_x or
    y2 <= pad_y) are culled here, before remapping. Without a transform the
    margin is zero.
    """

    p = np.asarray(output)
    _check_shape(p.shape)
    layout = cfg.layout or infer_layout(p.shape)

    mat = p[0] if layout is OutputLayout.CANDIDATES_FIRST else p[0].T  # (N, 4 + C)
    mat = mat.astype(np.float64, copy=False)
    if mat.shape[1] < 5:
        raise DecodeError(
            f"Need 4 box values plus at least one class score per candidate, got {mat.shape[1]} "
            f"(shape {p.shape}, layout {layout.value})"
        )
    if mat.shape[0] == 0:
        return _empty()

    class_scores = mat[:, 4:]
    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(class_scores.shape[0]), class_ids]

    keep = scores >= cfg.conf_threshold
    if not np.any(keep):
        return _empty()

    cx, cy, w, h = mat[keep, 0:4].T
    boxes = np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)
    scores = scores[keep]
    class_ids = class_ids[keep].astype(np.int64)

    pad_x = transform.pad_x if transform is not None else 0
    pad_y = transform.pad_y if transform is not None else 0
    visible = (boxes[:, 2] > pad_x) & (boxes[:, 3] > pad_y)

    return Candidates(boxes=boxes[visible], scores=scores[visible], class_ids=class_ids[visible])
