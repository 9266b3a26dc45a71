from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .classes import class_name
from .config import SessionConfig, load_session_config
from .decode import DetectorVariant
from .errors import ClashVisionError
from .export import ExportFormat
from .session import DetectionSession, load_session

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clashvision",
        description="Detect buildings in screenshots and write annotated images plus detection files.",
    )
    parser.add_argument("images", nargs="+", help="Input image path(s).")
    parser.add_argument(
        "--model",
        default=None,
        help="Path to an .onnx model. Defaults to the model bundled with the package.",
    )
    parser.add_argument(
        "--variant",
        default=None,
        choices=[v.value for v in DetectorVariant],
        help="Detector output layout (default: yolov8).",
    )
    parser.add_argument("--config", default=None, help="Optional JSON session config; CLI flags override it.")
    parser.add_argument("--imgsz", type=int, default=None, help="Square model input size (e.g., 640).")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--no-nms", action="store_true", help="Disable non-maximum suppression.")
    parser.add_argument("--per-class-nms", action="store_true", help="Only suppress boxes of the same class.")
    parser.add_argument("--max-det", type=int, default=None, help="Keep at most N detections per image.")
    parser.add_argument("--format", default=None, choices=[f.value for f in ExportFormat], help="Detection file format.")
    parser.add_argument("--out", default="output", help="Output directory (created if missing).")
    parser.add_argument(
        "--restore-original",
        action="store_true",
        help="Draw on the original image instead of the letterboxed model input.",
    )
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors.")
    return parser


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def resolve_config(args: argparse.Namespace) -> tuple[SessionConfig, DetectorVariant]:
    config, variant = SessionConfig(), None
    if args.config:
        config, variant = load_session_config(Path(args.config))

    overrides = {}
    if args.imgsz is not None:
        overrides["input_size"] = (int(args.imgsz), int(args.imgsz))
    if args.conf is not None:
        overrides["confidence_threshold"] = float(args.conf)
    if args.iou is not None:
        overrides["iou_threshold"] = float(args.iou)
    if args.no_nms:
        overrides["use_nms"] = False
    if args.per_class_nms:
        overrides["per_class_nms"] = True
    if args.max_det is not None:
        overrides["max_detections"] = int(args.max_det)
    if args.format is not None:
        overrides["export_format"] = ExportFormat.parse(args.format)
    if args.restore_original:
        overrides["restore_original"] = True
    if overrides:
        config = dataclasses.replace(config, **overrides)

    if args.variant is not None:
        variant = DetectorVariant.parse(args.variant)
    return config, variant or DetectorVariant.YOLOV8


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet)

    providers: Optional[List[str]] = None
    if args.onnx_providers:
        providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    try:
        config, variant = resolve_config(args)
        if args.model:
            session = load_session(args.model, variant=variant, config=config, providers=providers)
        else:
            session = DetectionSession.from_embedded(variant=variant, config=config, providers=providers)
    except ClashVisionError as exc:
        logger.error("Could not start detection session: %s", exc)
        return 2

    with session:
        items = session.process_images(args.images, output_dir=args.out)

    for item in items:
        if item.result is None:
            print(f"{item.image_path}: FAILED ({item.error})")
            continue
        print(f"{item.image_path}: {item.result.num_detections} detection(s) -> {item.result.annotated_path}")
        for det in item.result.detections:
            print(
                f"  {class_name(det.class_id)}: conf={det.confidence:.2f}, "
                f"bbox=[{det.x1:.1f}, {det.y1:.1f}, {det.x2:.1f}, {det.y2:.1f}]"
            )

    return 0 if all(item.ok for item in items) else 1


if __name__ == "__main__":
    raise SystemExit(main())
