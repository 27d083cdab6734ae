from __future__ import annotations

import argparse
import logging
from pathlib import Path

import cv2
from tqdm import tqdm

from overlay_kit import DecodeConfig, EmptyFrameError, LabelList, NMSConfig, OutputLayout, load_labels, load_pipeline
from overlay_kit.capture import get_capture_info, open_capture
from overlay_kit.visualize import count_by_class, draw_detections, draw_status


def main() -> int:
    parser = argparse.ArgumentParser(description="Annotate a video file offline with detector overlays.")
    parser.add_argument("--video", required=True, help="Input video path.")
    parser.add_argument("--out", required=True, help="Output video path (.mp4).")
    parser.add_argument("--model", default="Models/best.onnx", help="Detection model (.onnx/.torchscript).")
    parser.add_argument("--labels", default=None, help="metadata.yaml or text file with class names.")
    parser.add_argument("--imgsz", type=int, default=None, help="Square model input size.")
    parser.add_argument("--conf", type=float, default=0.25, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.45, help="IoU threshold for NMS.")
    parser.add_argument("--layout", choices=[m.value for m in OutputLayout], default=None, help="Output layout.")
    parser.add_argument("--every", type=int, default=1, help="Process every Nth frame.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = no limit).")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)

    if args.every < 1:
        raise ValueError("--every must be >= 1")
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    labels = load_labels(args.labels) if args.labels else LabelList()
    pipeline = load_pipeline(
        args.model,
        labels=labels,
        size=args.imgsz,
        decode_cfg=DecodeConfig(conf_threshold=args.conf, layout=OutputLayout(args.layout) if args.layout else None),
        nms_cfg=NMSConfig(iou_threshold=args.iou),
    )

    cap = open_capture(video=args.video)
    info = get_capture_info(cap)
    total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0) or None

    writer = None
    frame_idx = 0
    processed = 0
    skipped = 0
    detections = []
    pbar = tqdm(total=total, unit="frame")

    try:
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                break
            frame_idx += 1
            pbar.update(1)

            # Frames in between reuse the last detections.
            if (frame_idx - 1) % args.every == 0:
                try:
                    detections = pipeline(frame)
                except EmptyFrameError:
                    skipped += 1
                    continue
                processed += 1

            vis = draw_detections(frame, detections)
            draw_status(vis, f"frame {frame_idx}", count_by_class(detections, labels))

            if writer is None:
                h, w = vis.shape[:2]
                fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                writer = cv2.VideoWriter(str(Path(args.out)), fourcc, info.fps or 30.0, (w, h))
                if not writer.isOpened():
                    raise RuntimeError(f"Failed to open video writer: {args.out}")
            writer.write(vis)

            if args.max_frames and processed >= args.max_frames:
                break
    finally:
        pbar.close()
        cap.release()
        if writer is not None:
            writer.release()

    print(f"Done. frames={frame_idx} processed={processed} skipped={skipped} -> {args.out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
