import argparse
import logging
import time
from collections import deque
from pathlib import Path
from typing import Dict, List

import cv2
import numpy as np

from armor_kit import ArmorDetector, Detection, DetectorConfig, draw_armors, load_detector_config
from armor_kit.log import setup_logging


logger = logging.getLogger("run_armor_detect")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the async armor detector on an image or video and log results.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--config", default=None, help="Detector config JSON; CLI flags below are ignored if given.")
    parser.add_argument("--model", default="Models/armor.onnx", help="Path to the armor model (.onnx/.pt/.ts).")
    parser.add_argument("--device", default="CPU", help="Inference device (CPU / GPU).")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument("--conf", type=float, default=0.65, help="Confidence threshold.")
    parser.add_argument("--nms", type=float, default=0.45, help="IoU threshold for NMS.")
    parser.add_argument("--top-k", type=int, default=128, help="Maximum detections per frame.")
    parser.add_argument("--workers", type=int, default=4, help="Frames processed concurrently.")
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--out", default=None, help="Optional output path (image or video) to save the visualization.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    parser.add_argument("--log-file", default=None, help="Optional log file path.")
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)

    if args.config:
        cfg = load_detector_config(Path(args.config))
    else:
        cfg = DetectorConfig(
            model_path=args.model,
            device=args.device,
            backend=args.backend,
            conf_threshold=args.conf,
            nms_threshold=args.nms,
            top_k=args.top_k,
            max_workers=args.workers,
        )

    results: Dict[int, List[Detection]] = {}

    def on_result(detections: List[Detection], timestamp_ns: int, image: np.ndarray) -> None:
        # Runs on a worker thread; frames may arrive out of order.
        results[timestamp_ns] = detections
        for det in detections:
            logger.info(
                "t=%d %s %s conf=%.3f corners=%s",
                timestamp_ns,
                det.color.name,
                det.number.name,
                det.confidence,
                det.corners,
            )

    with ArmorDetector(cfg) as detector:
        detector.set_callback(on_result)

        if args.image is not None:
            img = cv2.imread(args.image)
            if img is None:
                raise FileNotFoundError(f"Could not read image at path: {args.image}")
            ts = time.monotonic_ns()
            detector.push_input(img, ts).result()
            vis = draw_armors(img, results.pop(ts, []))
            if args.out and not cv2.imwrite(args.out, vis):
                raise RuntimeError(f"Failed to write output image: {args.out}")
            if args.show:
                cv2.imshow("armors", vis)
                cv2.waitKey(0)
                cv2.destroyAllWindows()
            return 0

        if args.max_frames < 0:
            raise ValueError("--max-frames must be >= 0")

        if args.video is not None:
            cap = cv2.VideoCapture(args.video)
            if not cap.isOpened():
                raise FileNotFoundError(f"Could not open video: {args.video}")
        else:
            cap = cv2.VideoCapture(int(args.webcam))
            if not cap.isOpened():
                raise RuntimeError(f"Could not open webcam index: {args.webcam}")

        writer = None
        pending = deque()
        processed = 0

        def drain(limit: int) -> bool:
            # Emit finished frames in submission order; returns False to stop.
            nonlocal writer
            while len(pending) > limit:
                ts, frame, future = pending.popleft()
                future.result()
                vis = draw_armors(frame, results.pop(ts, []))
                if args.out and writer is None:
                    fps = cap.get(cv2.CAP_PROP_FPS)
                    if fps is None or fps <= 0:
                        fps = 30.0
                    h, w = vis.shape[:2]
                    writer = cv2.VideoWriter(args.out, cv2.VideoWriter_fourcc(*"mp4v"), fps, (w, h))
                    if not writer.isOpened():
                        raise RuntimeError(f"Failed to open video writer: {args.out}")
                if writer is not None:
                    writer.write(vis)
                if args.show:
                    cv2.imshow("armors", vis)
                    if cv2.waitKey(1) & 0xFF in (27, ord("q")):
                        return False
            return True

        try:
            while True:
                ok, frame = cap.read()
                if not ok or frame is None:
                    break
                ts = time.monotonic_ns()
                pending.append((ts, frame, detector.push_input(frame, ts)))
                if not drain(cfg.max_workers):
                    break
                processed += 1
                if args.max_frames and processed >= args.max_frames:
                    break
            drain(0)
        finally:
            cap.release()
            if writer is not None:
                writer.release()
            if args.show:
                cv2.destroyAllWindows()

        logger.info("Processed %d frames", processed)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
