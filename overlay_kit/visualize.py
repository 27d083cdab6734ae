from __future__ import annotations

import math
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .labels import LabelList
from .remap import scale_to_display
from .types import ClassificationResult, Detection


Color = Tuple[int, int, int]

# BGR, keyed by class name.
RIPENESS_COLORS: Dict[str, Color] = {
    "Early-Turning": (60, 146, 251),
    "Green": (128, 222, 74),
    "Late-Turning": (22, 115, 249),
    "Red": (113, 113, 248),
    "Turning": (21, 204, 250),
    "White": (249, 245, 241),
}


def _hex_to_bgr(value: str) -> Color:
    v = value.lstrip("#")
    if len(v) != 6:
        raise ValueError(f"Expected #rrggbb colour, got {value!r}")
    r, g, b = int(v[0:2], 16), int(v[2:4], 16), int(v[4:6], 16)
    return b, g, r


def color_for(det_or_name, palette: Optional[Dict[str, Color]] = None) -> Color:
    """
    BGR colour for a detection / class name; classes without an entry fall back to a
    colour derived from the class id (or white when the id is unknown).
    """

    palette = RIPENESS_COLORS if palette is None else palette
    name = det_or_name if isinstance(det_or_name, str) else det_or_name.class_name
    if name in palette:
        return palette[name]
    class_id = None if isinstance(det_or_name, str) else det_or_name.class_id
    if class_id is None:
        return (255, 255, 255)
    rng = np.random.default_rng(int(class_id))
    bgr = rng.integers(64, 256, size=3, dtype=np.uint8)
    return int(bgr[0]), int(bgr[1]), int(bgr[2])


def parse_palette(raw: Dict[str, str]) -> Dict[str, Color]:
    return {name: _hex_to_bgr(value) for name, value in raw.items()}


def format_label(name: str, score: float) -> str:
    return f"{name} {score * 100:.0f}%"


def count_by_class(detections: Iterable[Detection], labels: Optional[LabelList] = None) -> Dict[str, int]:
    """
    Per-class counts, ordered like `labels` (unlisted names last, by first appearance).
    """

    counts = Counter(d.class_name for d in detections)
    ordered: Dict[str, int] = {}
    if labels is not None:
        for name in labels:
            if counts.get(name):
                ordered[name] = counts[name]
    for name, n in counts.items():
        ordered.setdefault(name, n)
    return ordered


def class_shares(counts: Dict[str, int]) -> Dict[str, int]:
    """
    Whole-number percentage of the total for each class, rounded half up.
    """

    total = sum(counts.values())
    if total <= 0:
        return {name: 0 for name in counts}
    return {name: int(math.floor(n * 100.0 / total + 0.5)) for name, n in counts.items()}


def _draw_label(out: np.ndarray, text: str, x: int, y: int, color: Color, font_scale: float, thickness: int) -> None:
    import cv2  # type: ignore

    h, w = out.shape[:2]
    (tw, th), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness)
    # Above the box when there is room, inside otherwise.
    top = y - th - baseline - 6
    if top < 0:
        top = y
    right = min(x + tw + 12, w - 1)
    bottom = min(top + th + baseline + 6, h - 1)

    roi = out[top:bottom, x:right]
    if roi.size:
        # Dark translucent plate behind the text.
        out[top:bottom, x:right] = (roi.astype(np.float32) * 0.3).astype(out.dtype)
    cv2.putText(
        out,
        text,
        (x + 6, min(top + th + 3, h - 1)),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        color,
        thickness=thickness,
        lineType=cv2.LINE_AA,
    )


def draw_detections(
    image_bgr: np.ndarray,
    detections: Sequence[Detection],
    *,
    source_size: Optional[Tuple[int, int]] = None,
    palette: Optional[Dict[str, Color]] = None,
    box_thickness: int = 3,
    font_scale: float = 0.6,
    font_thickness: int = 2,
) -> np.ndarray:
    """
    Draw boxes + "<name> <pct>%" labels on a BGR image and return a copy.

    Args:
        image_bgr: display surface (H, W, 3)
        detections: boxes in source-frame coordinates
        source_size: (width, height) of the frame the detections came from; when it
            differs from the surface, boxes are rescaled. Defaults to the surface size.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]
    dets: List[Detection] = list(detections)
    if source_size is not None:
        dets = scale_to_display(dets, source_size, (w, h))

    for det in dets:
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))

        color = color_for(det, palette)
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)
        _draw_label(out, format_label(det.class_name, det.score), x1i, y1i, color, font_scale, font_thickness)

    return out


def draw_classification(
    image_bgr: np.ndarray,
    result: Optional[ClassificationResult],
    *,
    palette: Optional[Dict[str, Color]] = None,
    font_scale: float = 0.7,
    font_thickness: int = 2,
) -> np.ndarray:
    import cv2  # type: ignore

    out = image_bgr.copy()
    if result is None:
        return out
    color = color_for(result.class_name, palette)
    x, y = 0, 0
    if result.region is not None:
        x1, y1, x2, y2 = result.region.as_xyxy()
        cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness=2)
        x, y = x1, y1
    _draw_label(out, format_label(result.class_name, result.score), x, y, color, font_scale, font_thickness)
    return out


def draw_status(image_bgr: np.ndarray, status: str, counts: Optional[Dict[str, int]] = None) -> np.ndarray:
    """
    Status line plus the per-class breakdown, top-left.
    """

    import cv2  # type: ignore

    lines = [status]
    if counts:
        total = sum(counts.values())
        lines.append(f"Detected: {total}")
        shares = class_shares(counts)
        lines.extend(f"  {name}: {n} ({shares[name]}%)" for name, n in counts.items())
    y = 22
    for line in lines:
        cv2.putText(image_bgr, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.55, (0, 0, 0), 3, cv2.LINE_AA)
        cv2.putText(image_bgr, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.55, (255, 255, 255), 1, cv2.LINE_AA)
        y += 22
    return image_bgr
