from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .decode import OutputLayout


@dataclass(frozen=True)
class OverlayProfile:
    """
    Run profile loaded from JSON. CLI flags override these values.
    """

    schema_version: int
    model: str
    variant: str = "detect"
    labels: Optional[Tuple[str, ...]] = None
    labels_path: Optional[str] = None
    input_size: Optional[int] = None
    conf_threshold: float = 0.25
    iou_threshold: float = 0.45
    layout: Optional[OutputLayout] = None
    frame_interval_s: float = 1.0 / 30.0
    palette: Dict[str, str] = field(default_factory=dict)
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("overlay profile schema_version must be 1")
        if not self.model:
            raise ValueError("model must be a non-empty path")
        if self.variant not in ("detect", "classify"):
            raise ValueError("variant must be 'detect' or 'classify'")
        if self.labels is not None and self.labels_path is not None:
            raise ValueError("labels and labels_path are mutually exclusive")
        if self.input_size is not None and self.input_size < 32:
            raise ValueError("input_size must be >= 32")
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be within [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.frame_interval_s < 0:
            raise ValueError("frame_interval_s must be >= 0")


def _require_str(payload: Dict[str, Any], key: str) -> str:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_number(payload: Dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string if provided")
    return value


def load_profile(path: Path) -> OverlayProfile:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Overlay profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid overlay profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Overlay profile must be a JSON object")

    allowed = {
        "schema_version",
        "model",
        "variant",
        "labels",
        "labels_path",
        "input_size",
        "conf_threshold",
        "iou_threshold",
        "layout",
        "frame_interval_s",
        "palette",
        "notes",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown overlay profile keys: {unknown}")

    labels = payload.get("labels")
    if labels is not None:
        if not isinstance(labels, list) or not all(isinstance(s, str) for s in labels):
            raise ValueError("labels must be a list of strings")
        labels = tuple(labels)

    input_size = payload.get("input_size")
    if input_size is not None and (isinstance(input_size, bool) or not isinstance(input_size, int)):
        raise ValueError("input_size must be an integer if provided")

    layout_raw = _optional_str(payload, "layout")
    try:
        layout = OutputLayout(layout_raw) if layout_raw is not None else None
    except ValueError as exc:
        raise ValueError(f"layout must be one of {[m.value for m in OutputLayout]}") from exc

    palette = payload.get("palette", {})
    if not isinstance(palette, dict) or not all(isinstance(v, str) for v in palette.values()):
        raise ValueError("palette must map class names to '#rrggbb' strings")

    return OverlayProfile(
        schema_version=_require_int(payload, "schema_version"),
        model=_require_str(payload, "model"),
        variant=_optional_str(payload, "variant") or "detect",
        labels=labels,
        labels_path=_optional_str(payload, "labels_path"),
        input_size=input_size,
        conf_threshold=_optional_number(payload, "conf_threshold", 0.25),
        iou_threshold=_optional_number(payload, "iou_threshold", 0.45),
        layout=layout,
        frame_interval_s=_optional_number(payload, "frame_interval_s", 1.0 / 30.0),
        palette=dict(palette),
        notes=_optional_str(payload, "notes"),
    )
