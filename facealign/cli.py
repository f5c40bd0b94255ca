"""Command line entry point: align a batch of face photos and export an animation."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from tqdm import tqdm

from .config import alignment_config, export_settings, load_config, merge_config
from .errors import DetectorUnavailable, EncoderFailure, InvalidConfig
from .export import ASPECT_RATIOS, GifEncoder, VideoEncoder, export_sequence
from .landmarks import load_detector
from .reconcile import process_batch
from .utils import expand_inputs, load_image, setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="facealign", description="Align faces and export a GIF or video")
    parser.add_argument("inputs", nargs="+", help="Image files or directories, in frame order")
    parser.add_argument("--config", type=str, default="config.yaml", help="Path to config YAML")
    parser.add_argument("--out_dir", "--out-dir", dest="out_dir", type=str, default=None)
    parser.add_argument("--format", type=str, choices=["gif", "video"], default=None)
    parser.add_argument("--eye_distance", "--eye-distance", dest="eye_distance", type=float, default=None,
                        help="Eye separation in output pixels")
    parser.add_argument("--eye_y", "--eye-y", dest="eye_y", type=float, default=None,
                        help="Eye line height from the top (default 40%% of canvas)")
    parser.add_argument("--canvas_size", "--canvas-size", dest="canvas_size", type=int, default=None)
    parser.add_argument("--scale_factor", "--scale-factor", dest="scale_factor", type=float, default=None)
    parser.add_argument("--aspect", type=str, choices=sorted(ASPECT_RATIOS), default=None)
    parser.add_argument("--resolution", type=int, default=None, help="Longer side of the exported frames")
    parser.add_argument("--fps", type=int, default=None, help="Video frame rate")
    parser.add_argument("--duration", type=int, default=None, help="Milliseconds per frame")
    parser.add_argument("--prefix", type=str, default=None, help="Output file name prefix")
    parser.add_argument("--extractor", type=str, choices=["dlib", "mediapipe"], default=None)
    parser.add_argument("--predictor", type=str, default=None, help="dlib shape predictor .dat")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--debug_overlay", "--debug-overlay", dest="debug_overlay", action="store_true",
                        default=None, help="Draw eye metrics on every frame")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    try:
        cfg = merge_config(load_config(args.config), args)
        config = alignment_config(cfg)
        settings = export_settings(cfg)
    except InvalidConfig as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    paths = expand_inputs(args.inputs)
    if not paths:
        print("No input images found", file=sys.stderr)
        return 1

    try:
        detector = load_detector(cfg["detector"]["extractor"], cfg["detector"]["predictor_path"])
    except DetectorUnavailable as exc:
        print(f"Detector unavailable: {exc}", file=sys.stderr)
        return 1

    images, names = [], []
    for path in paths:
        names.append(os.path.basename(path))
        try:
            images.append(load_image(path))
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            images.append(None)

    sequence = process_batch(
        images,
        detector,
        config,
        names=names,
        duration_ms=settings.frame_duration_ms,
        workers=cfg["workers"],
        overlay=bool(cfg["debug_overlay"]),
    )
    for entry in sequence.failed_entries:
        print(f"{entry.name}: {entry.frame.error}")
    print(f"Aligned {len(sequence.valid_entries)}/{len(sequence)} images")

    if settings.format == "gif":
        encoder = GifEncoder()
    else:
        encoder = VideoEncoder(fps=settings.fps)
    with tqdm(total=100, desc="Encode", leave=False) as bar:

        def _progress(pct: int) -> None:
            bar.update(pct - bar.n)

        try:
            result = export_sequence(
                sequence,
                encoder,
                aspect_ratio=settings.aspect_ratio,
                resolution=settings.resolution,
                out_dir=settings.out_dir,
                prefix=settings.prefix,
                progress=_progress,
            )
        except EncoderFailure as exc:
            print(f"Export failed: {exc}", file=sys.stderr)
            return 1
    print(f"Wrote {result.path} ({result.frame_count} frames, {result.width}x{result.height})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
