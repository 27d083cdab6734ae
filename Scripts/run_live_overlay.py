from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional, TypeVar

import cv2

from overlay_kit import (
    DecodeConfig,
    FrameResult,
    FrameScheduler,
    LabelList,
    NMSConfig,
    OutputLayout,
    SchedulerConfig,
    load_labels,
    load_pipeline,
)
from overlay_kit.capture import CaptureFrameSource, get_capture_info, open_capture
from overlay_kit.config import OverlayProfile, load_profile
from overlay_kit.roi import CascadeConfig, CascadeRoiDetector
from overlay_kit.visualize import count_by_class, draw_classification, draw_detections, draw_status, parse_palette

T = TypeVar("T")

DEFAULT_MODEL = "Models/best.onnx"


def _resolve(cli_value: Optional[T], profile_value: Optional[T], default_value: T) -> T:
    if cli_value is not None:
        return cli_value
    if profile_value is not None:
        return profile_value
    return default_value


def _parse_providers(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    parts = [p.strip().strip("'\"`") for p in str(raw).split(",")]
    return [p for p in parts if p] or None


def _resolve_labels(args: argparse.Namespace, profile: Optional[OverlayProfile]) -> LabelList:
    if args.labels:
        return load_labels(args.labels)
    if profile is not None and profile.labels_path:
        return load_labels(profile.labels_path)
    if profile is not None and profile.labels:
        return LabelList(profile.labels)
    return LabelList()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a detector/classifier on a live feed and overlay the results.")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--webcam", type=int, default=None, help="Camera index (falls back to camera 0).")
    src.add_argument("--video", default=None, help="Path to a video file.")
    src.add_argument("--rtsp", default=None, help="RTSP/HTTP stream URL.")
    parser.add_argument("--config", default=None, help="JSON overlay profile.")
    parser.add_argument("--model", default=None, help=f"Model path (.onnx/.torchscript). Default: {DEFAULT_MODEL}")
    parser.add_argument("--variant", choices=("detect", "classify"), default=None, help="Pipeline variant.")
    parser.add_argument("--labels", default=None, help="metadata.yaml or text file with one class name per line.")
    parser.add_argument("--imgsz", type=int, default=None, help="Square model input size (default 640 / 64).")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold (default 0.25).")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS (default 0.45).")
    parser.add_argument(
        "--layout",
        choices=[m.value for m in OutputLayout],
        default=None,
        help="Output layout; inferred from the output shape when omitted.",
    )
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--ort-threads", type=int, default=0, help="ONNX Runtime intra-op threads (0 = ORT default).")
    parser.add_argument("--cascade", default=None, help="Haar cascade XML for --variant classify.")
    parser.add_argument("--fps", type=float, default=None, help="Target cycle rate (default 30).")
    parser.add_argument("--loop-video", action="store_true", help="Restart --video when it ends.")
    parser.add_argument("--show", action="store_true", help="Show a window with the overlay (q/Esc to quit).")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N processed frames (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser


async def run(args: argparse.Namespace) -> int:
    profile = load_profile(Path(args.config)) if args.config else None

    variant = _resolve(args.variant, profile.variant if profile else None, "detect")
    model = _resolve(args.model, profile.model if profile else None, DEFAULT_MODEL)
    conf = float(_resolve(args.conf, profile.conf_threshold if profile else None, 0.25))
    iou = float(_resolve(args.iou, profile.iou_threshold if profile else None, 0.45))
    size = _resolve(args.imgsz, profile.input_size if profile else None, None)
    layout_raw = _resolve(args.layout, profile.layout if profile else None, None)
    interval = 1.0 / args.fps if args.fps else _resolve(None, profile.frame_interval_s if profile else None, 1.0 / 30.0)
    palette = parse_palette(profile.palette) if profile and profile.palette else None

    if size is not None and size < 32:
        raise ValueError("--imgsz must be >= 32")
    if args.fps is not None and args.fps <= 0:
        raise ValueError("--fps must be > 0")
    if args.ort_threads < 0:
        raise ValueError("--ort-threads must be >= 0")
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")
    if args.loop_video and not args.video:
        raise ValueError("--loop-video is only valid with --video.")

    labels = _resolve_labels(args, profile)
    roi_fn = CascadeRoiDetector(CascadeConfig(cascade_path=args.cascade)) if variant == "classify" else None

    pipeline = load_pipeline(
        model,
        variant=variant,
        backend=args.backend,
        labels=labels,
        size=size,
        decode_cfg=DecodeConfig(conf_threshold=conf, layout=OutputLayout(layout_raw) if layout_raw else None),
        nms_cfg=NMSConfig(iou_threshold=iou),
        roi_fn=roi_fn,
        onnx_providers=_parse_providers(args.onnx_providers),
        onnx_intra_op_threads=args.ort_threads,
    )
    providers = getattr(pipeline.backend, "providers_in_use", None)
    if providers is not None:
        print(f"ONNX Runtime session providers: {list(providers)}")

    if args.video is None and args.rtsp is None:
        cap = open_capture(webcam=0 if args.webcam is None else args.webcam)
    else:
        cap = open_capture(video=args.video, rtsp=args.rtsp)
    info = get_capture_info(cap)
    print(f"Source: {info.width}x{info.height} @ {info.fps or 'unknown'} fps")

    source = CaptureFrameSource(cap, loop_video=args.loop_video, live=args.video is None)

    def on_result(result: FrameResult) -> None:
        frame = source.last_frame
        counts = count_by_class(result.detections, labels)
        if args.show and frame is not None:
            if result.classification is not None:
                vis = draw_classification(frame, result.classification, palette=palette)
            else:
                vis = draw_detections(frame, result.detections, source_size=result.source_size, palette=palette)
            draw_status(vis, scheduler.status, counts if variant == "detect" else None)
            cv2.imshow("overlay", vis)
            key = cv2.waitKey(1) & 0xFF
            if key in (27, ord("q")):
                scheduler.stop()
        if args.max_frames and scheduler.frames_processed >= args.max_frames:
            scheduler.stop()

    scheduler = FrameScheduler(source, pipeline, cfg=SchedulerConfig(frame_interval_s=interval), on_result=on_result)
    scheduler.start()
    last_status = ""
    try:
        while scheduler.is_running:
            if scheduler.status != last_status:
                last_status = scheduler.status
                print(f"Status: {scheduler.status}")
            await asyncio.sleep(0.25)
        await scheduler.wait_stopped()
    finally:
        scheduler.stop()
        source.close()
        if args.show:
            cv2.destroyAllWindows()

    print(f"Frames processed: {scheduler.frames_processed}")
    return 0


def main() -> int:
    args = build_parser().parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
