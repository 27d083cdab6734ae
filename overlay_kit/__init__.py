"""
Per-frame inference post-processing for live camera overlays.

Letterbox a frame into a square tensor, run any model callable, decode the raw
output (YOLO-style detections or classification logits), suppress overlapping
boxes and map everything back onto the source frame. NumPy does the math;
OpenCV handles resizing, cascades, capture and drawing.
"""

from .types import ClassificationResult, Detection, LetterboxTransform, RegionOfInterest
from .errors import DecodeError, EmptyFrameError, ModelNotReadyError, OverlayError
from .letterbox import LetterboxConfig, letterbox, preprocess, to_tensor
from .decode import Candidates, DecodeConfig, OutputLayout, decode_detections, infer_layout
from .classify import decode_classification, softmax
from .nms import NMSConfig, iou, nms, nms_detections
from .remap import remap_boxes, remap_point, scale_to_display
from .labels import LabelList, load_class_names, load_labels
from .runtime import (
    ClassificationPipeline,
    DetectionPipeline,
    FrameResult,
    find_project_root,
    load_pipeline,
    resolve_path,
)
from .scheduler import CycleOutcome, FrameScheduler, SchedulerConfig, SchedulerState

__all__ = [
    "ClassificationResult",
    "Detection",
    "LetterboxTransform",
    "RegionOfInterest",
    "DecodeError",
    "EmptyFrameError",
    "ModelNotReadyError",
    "OverlayError",
    "LetterboxConfig",
    "letterbox",
    "preprocess",
    "to_tensor",
    "Candidates",
    "DecodeConfig",
    "OutputLayout",
    "decode_detections",
    "infer_layout",
    "decode_classification",
    "softmax",
    "NMSConfig",
    "iou",
    "nms",
    "nms_detections",
    "remap_boxes",
    "remap_point",
    "scale_to_display",
    "LabelList",
    "load_class_names",
    "load_labels",
    "ClassificationPipeline",
    "DetectionPipeline",
    "FrameResult",
    "find_project_root",
    "load_pipeline",
    "resolve_path",
    "CycleOutcome",
    "FrameScheduler",
    "SchedulerConfig",
    "SchedulerState",
]
