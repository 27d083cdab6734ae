from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .classify import decode_classification
from .decode import DecodeConfig, decode_detections
from .errors import EmptyFrameError, ModelNotReadyError
from .labels import LabelList
from .letterbox import LetterboxConfig, preprocess
from .nms import NMSConfig, nms
from .remap import to_detections
from .roi import crop_region
from .types import ClassificationResult, Detection, LetterboxTransform, RegionOfInterest


PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], Union[np.ndarray, Awaitable[np.ndarray]]]
RoiFn = Callable[[np.ndarray], Optional[RegionOfInterest]]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git", "Models"),
) -> Path:
    """
    Best-effort project root discovery, so `Models/best.onnx` resolves from anywhere
    inside the checkout.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Absolute paths are returned as-is; relative ones resolve against `root`
    (or the discovered project root when root is "auto"/None).
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass(frozen=True)
class FrameResult:
    """
    Everything the renderer needs for one processed frame. Boxes are already in
    source-frame pixels; the letterbox transform does not outlive the cycle.
    """

    source_size: Tuple[int, int]  # (width, height)
    detections: Tuple[Detection, ...] = ()
    classification: Optional[ClassificationResult] = None


async def _run_model(infer_fn: InferFn, blob: np.ndarray, offload: bool) -> np.ndarray:
    # Synchronous runtimes go to a worker thread so the event loop keeps its cadence;
    # the caller still awaits, so only one call is ever in flight per pipeline.
    if inspect.iscoroutinefunction(infer_fn) or not offload:
        out = infer_fn(blob)
    else:
        out = await asyncio.to_thread(infer_fn, blob)
    if inspect.isawaitable(out):
        out = await out
    return np.asarray(out)


def _frame_size(frame: np.ndarray) -> Tuple[int, int]:
    if frame is None or not hasattr(frame, "shape") or frame.ndim < 2:
        raise EmptyFrameError("Frame is missing.")
    h, w = frame.shape[:2]
    if w == 0 or h == 0:
        raise EmptyFrameError(f"Frame has zero area ({w}x{h}).")
    return int(w), int(h)


class DetectionPipeline:
    """
    letterbox -> model -> decode -> NMS -> remap.

    Frames are OpenCV BGR arrays by default; detections come back in source-frame
    pixel coordinates.
    """

    def __init__(
        self,
        infer_fn: Optional[InferFn],
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
        letterbox_cfg: LetterboxConfig = LetterboxConfig(size=640),
        decode_cfg: DecodeConfig = DecodeConfig(),
        nms_cfg: NMSConfig = NMSConfig(),
        labels: LabelList = LabelList(),
        offload_inference: bool = True,
    ):
        self._infer_fn = infer_fn
        self.backend = backend
        self.backend_name = backend_name
        self.letterbox_cfg = letterbox_cfg
        self.decode_cfg = decode_cfg
        self.nms_cfg = nms_cfg
        self.labels = labels
        self.offload_inference = offload_inference

    @property
    def ready(self) -> bool:
        if self._infer_fn is None:
            return False
        return bool(getattr(self.backend, "ready", True))

    def attach(self, infer_fn: InferFn, backend: Optional[object] = None, backend_name: Optional[str] = None) -> None:
        """
        Install the model once it has finished loading.
        """

        self._infer_fn = infer_fn
        self.backend = backend
        self.backend_name = backend_name

    def preprocess(self, frame: np.ndarray) -> Tuple[np.ndarray, LetterboxTransform]:
        _frame_size(frame)
        return preprocess(frame, self.letterbox_cfg)

    def postprocess(self, output: np.ndarray, transform: LetterboxTransform) -> List[Detection]:
        cands = decode_detections(output, self.decode_cfg, transform)
        if len(cands) == 0:
            return []
        keep = nms(cands.boxes, cands.scores, self.nms_cfg)
        return to_detections(cands.boxes[keep], cands.scores[keep], cands.class_ids[keep], transform, self.labels)

    def __call__(self, frame: np.ndarray) -> List[Detection]:
        if self._infer_fn is None:
            raise ModelNotReadyError("Model is not loaded yet.")
        blob, transform = self.preprocess(frame)
        output = self._infer_fn(blob)
        if inspect.isawaitable(output):
            raise TypeError("infer_fn is asynchronous; use `await pipeline.process(frame)` instead.")
        return self.postprocess(np.asarray(output), transform)

    async def process(self, frame: np.ndarray) -> FrameResult:
        infer_fn = self._infer_fn
        if infer_fn is None:
            raise ModelNotReadyError("Model is not loaded yet.")
        size = _frame_size(frame)
        blob, transform = self.preprocess(frame)
        output = await _run_model(infer_fn, blob, self.offload_inference)
        dets = self.postprocess(output, transform)
        return FrameResult(source_size=size, detections=tuple(dets))


class ClassificationPipeline:
    """
    ROI -> crop -> letterbox -> model -> softmax.

    At most one subject per frame: the largest region reported by `roi_fn`. With
    no ROI detector the whole frame is classified.
    """

    def __init__(
        self,
        infer_fn: Optional[InferFn],
        *,
        roi_fn: Optional[RoiFn] = None,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
        letterbox_cfg: LetterboxConfig = LetterboxConfig(size=64),
        labels: LabelList = LabelList(),
        offload_inference: bool = True,
    ):
        self._infer_fn = infer_fn
        self.roi_fn = roi_fn
        self.backend = backend
        self.backend_name = backend_name
        self.letterbox_cfg = letterbox_cfg
        self.labels = labels
        self.offload_inference = offload_inference

    @property
    def ready(self) -> bool:
        if self._infer_fn is None:
            return False
        if self.roi_fn is not None and not getattr(self.roi_fn, "ready", True):
            return False
        return bool(getattr(self.backend, "ready", True))

    def attach(self, infer_fn: InferFn, backend: Optional[object] = None, backend_name: Optional[str] = None) -> None:
        self._infer_fn = infer_fn
        self.backend = backend
        self.backend_name = backend_name

    def select_region(self, frame: np.ndarray) -> Optional[RegionOfInterest]:
        w, h = _frame_size(frame)
        if self.roi_fn is None:
            return RegionOfInterest(x=0, y=0, width=w, height=h)
        return self.roi_fn(frame)

    def preprocess(self, frame: np.ndarray, region: RegionOfInterest) -> np.ndarray:
        crop = crop_region(frame, region)
        if crop.size == 0:
            raise EmptyFrameError(f"Region {region} lies outside the frame.")
        blob, _ = preprocess(crop, self.letterbox_cfg)
        return blob

    def __call__(self, frame: np.ndarray) -> Optional[ClassificationResult]:
        if self._infer_fn is None:
            raise ModelNotReadyError("Model is not loaded yet.")
        region = self.select_region(frame)
        if region is None:
            return None
        output = self._infer_fn(self.preprocess(frame, region))
        if inspect.isawaitable(output):
            raise TypeError("infer_fn is asynchronous; use `await pipeline.process(frame)` instead.")
        return decode_classification(np.asarray(output), self.labels, region=region)

    async def process(self, frame: np.ndarray) -> FrameResult:
        infer_fn = self._infer_fn
        if infer_fn is None:
            raise ModelNotReadyError("Model is not loaded yet.")
        size = _frame_size(frame)
        region = self.select_region(frame)
        if region is None:
            return FrameResult(source_size=size)
        output = await _run_model(infer_fn, self.preprocess(frame, region), self.offload_inference)
        result = decode_classification(output, self.labels, region=region)
        return FrameResult(source_size=size, classification=result)


Pipeline = Union[DetectionPipeline, ClassificationPipeline]


def _load_backend(
    resolved: Path,
    backend: Optional[str],
    *,
    onnx_providers: Optional[Sequence[str]],
    onnx_input_name: Optional[str],
    onnx_output_name: Optional[str],
    onnx_intra_op_threads: int,
    torch_device: str,
    torch_half: bool,
    torch_output_index: int,
) -> Tuple[object, str]:
    chosen = backend
    if chosen is None:
        suffix = resolved.suffix.lower()
        if suffix == ".onnx":
            chosen = "onnxruntime"
        elif suffix in {".torchscript", ".ts", ".pt"}:
            chosen = "torchscript"
        else:
            raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")

    chosen = chosen.lower()
    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        return (
            OnnxRuntimeBackend(
                resolved,
                OnnxRuntimeBackendConfig(
                    providers=onnx_providers,
                    input_name=onnx_input_name,
                    output_name=onnx_output_name,
                    intra_op_threads=onnx_intra_op_threads,
                ),
            ),
            "onnxruntime",
        )

    if chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        return (
            TorchScriptBackend(
                resolved,
                TorchScriptBackendConfig(device=torch_device, half=torch_half, output_index=torch_output_index),
            ),
            "torchscript",
        )

    raise ValueError(f"Unsupported backend: {backend!r}")


def load_pipeline(
    model_path: PathLike,
    *,
    variant: str = "detect",
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    labels: LabelList = LabelList(),
    size: Optional[int] = None,
    decode_cfg: DecodeConfig = DecodeConfig(),
    nms_cfg: NMSConfig = NMSConfig(),
    roi_fn: Optional[RoiFn] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_name: Optional[str] = None,
    onnx_intra_op_threads: int = 0,
    torch_device: str = "cpu",
    torch_half: bool = False,
    torch_output_index: int = 0,
) -> Pipeline:
    """
    Build a ready-to-run pipeline for a model on disk.

        pipe = load_pipeline("Models/best.onnx")              # detection, 640
        clf = load_pipeline("Models/emotion.onnx", variant="classify", roi_fn=CascadeRoiDetector())

    Args:
        model_path: weights file; relative paths resolve against the project root by default
        variant: "detect" or "classify"
        backend: "onnxruntime" / "torchscript", or None to infer from the extension
        size: square input size; defaults to the model's declared size, else 640 / 64
    """

    if variant not in ("detect", "classify"):
        raise ValueError(f"variant must be 'detect' or 'classify', got {variant!r}")

    resolved = resolve_path(model_path, root=root)
    runner, backend_name = _load_backend(
        resolved,
        backend,
        onnx_providers=onnx_providers,
        onnx_input_name=onnx_input_name,
        onnx_output_name=onnx_output_name,
        onnx_intra_op_threads=onnx_intra_op_threads,
        torch_device=torch_device,
        torch_half=torch_half,
        torch_output_index=torch_output_index,
    )

    if size is None:
        size = getattr(runner, "input_size", None)
    if size is None:
        size = 640 if variant == "detect" else 64

    if variant == "detect":
        return DetectionPipeline(
            runner.infer,
            backend=runner,
            backend_name=backend_name,
            letterbox_cfg=LetterboxConfig(size=int(size)),
            decode_cfg=decode_cfg,
            nms_cfg=nms_cfg,
            labels=labels,
        )
    return ClassificationPipeline(
        runner.infer,
        roi_fn=roi_fn,
        backend=runner,
        backend_name=backend_name,
        letterbox_cfg=LetterboxConfig(size=int(size)),
        labels=labels,
    )
