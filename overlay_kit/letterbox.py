from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import EmptyFrameError
from .types import LetterboxTransform


PAD_COLOR: Tuple[int, int, int] = (128, 128, 128)


@dataclass(frozen=True)
class LetterboxConfig:
    size: int = 640
    color: Tuple[int, int, int] = PAD_COLOR
    # Channel order of incoming frames: "bgr" (OpenCV capture) or "rgb".
    input_order: str = "bgr"

    def __post_init__(self) -> None:
        if self.size < 1:
            raise ValueError("size must be >= 1")
        if self.input_order not in ("bgr", "rgb"):
            raise ValueError(f"input_order must be 'bgr' or 'rgb', got {self.input_order!r}")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_transform(width: int, height: int, size: int) -> LetterboxTransform:
    """
    Scale and padding that fit a `width x height` frame into a `size x size` square.
    """

    if width <= 0 or height <= 0:
        raise EmptyFrameError(f"Cannot letterbox a zero-sized frame ({width}x{height}).")
    scale = min(size / width, size / height)
    sw = max(1, _round_half_up(width * scale))
    sh = max(1, _round_half_up(height * scale))
    pad_x = (size - sw) // 2
    pad_y = (size - sh) // 2
    return LetterboxTransform(
        scale=scale,
        pad_x=pad_x,
        pad_y=pad_y,
        source_size=(int(width), int(height)),
        target_size=int(size),
    )


def _to_rgb(image: np.ndarray, input_order: str) -> np.ndarray:
    import cv2  # type: ignore

    if image.ndim == 2 or image.shape[2] == 1:
        return cv2.cvtColor(image.reshape(image.shape[:2]), cv2.COLOR_GRAY2RGB)
    channels = image.shape[2]
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB) if input_order == "bgr" else image
    if channels == 4:
        code = cv2.COLOR_BGRA2RGB if input_order == "bgr" else cv2.COLOR_RGBA2RGB
        return cv2.cvtColor(image, code)
    raise ValueError(f"Expected 1, 3 or 4 channels, got shape {image.shape}")


def letterbox(
    image: np.ndarray,
    size: int = 640,
    color: Tuple[int, int, int] = PAD_COLOR,
    input_order: str = "bgr",
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Fit `image` into a `size x size` RGB canvas without distortion.

    The scaled image is centered on a canvas filled with `color` (RGB). Nothing is
    cropped.

    Returns:
        canvas: uint8 RGB array of shape (size, size, 3)
        transform: the scale/padding needed to map tensor coordinates back
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise EmptyFrameError("Frame is missing.")
    if image.ndim not in (2, 3):
        raise ValueError(f"Expected image shape (H, W) or (H, W, C), got {image.shape}")

    h, w = image.shape[:2]
    transform = compute_transform(w, h, size)
    rgb = _to_rgb(image, input_order)

    sw = max(1, _round_half_up(w * transform.scale))
    sh = max(1, _round_half_up(h * transform.scale))
    if (w, h) != (sw, sh):
        rgb = cv2.resize(rgb, (sw, sh), interpolation=cv2.INTER_LINEAR)

    canvas = np.empty((size, size, 3), dtype=np.uint8)
    canvas[:, :] = np.asarray(color, dtype=np.uint8)
    canvas[transform.pad_y : transform.pad_y + sh, transform.pad_x : transform.pad_x + sw] = rgb
    return canvas, transform


def to_tensor(canvas_rgb: np.ndarray) -> np.ndarray:
    """
    HWC uint8 RGB -> planar float32 (1, 3, H, W) in [0, 1].
    """

    blob = canvas_rgb.astype(np.float32) / 255.0
    blob = np.transpose(blob, (2, 0, 1))[None, ...]
    return np.ascontiguousarray(blob)


def preprocess(image: np.ndarray, cfg: LetterboxConfig = LetterboxConfig()) -> Tuple[np.ndarray, LetterboxTransform]:
    canvas, transform = letterbox(image, size=cfg.size, color=cfg.color, input_order=cfg.input_order)
    return to_tensor(canvas), transform
