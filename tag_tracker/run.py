import argparse
import sys
from pathlib import Path

from tag_pipeline.errors import TrackerError

from .config import TrackerConfig, load_config
from .logging_utils import setup_logger
from .worker import TrackerWorker


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Extract per-frame tag poses from a video")
    ap.add_argument("--config", help="Path to JSON/YAML config")

    ap.add_argument("-v", "--video", help="Video file to extract poses from")
    ap.add_argument("-c", "--camera-calibration-file", dest="calib",
                    help="File with calibration parameters (TOML/JSON/YAML)")
    ap.add_argument("-o", "--out", help="File to write output JSON to")
    ap.add_argument("-s", "--tag-size", type=float, help="Internal tag marker length in metres")
    ap.add_argument("-t", "--tag-family", help="Tag family name, e.g. tag36h11 or 4x4_50")
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--workers", type=int, help="Detection threads (1 = sequential)")
    ap.add_argument("--frame-timeout", type=float, help="Seconds allowed per frame with --workers > 1")
    ap.add_argument("--no-partial-output", action="store_true",
                    help="Write nothing if decoding fails part way")
    ap.add_argument("--log-file")
    ap.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    return ap


def _apply_args(cfg: TrackerConfig, args: argparse.Namespace) -> TrackerConfig:
    cfg.apply_overrides(
        video_path=args.video,
        calibration_path=args.calib,
        output_path=args.out,
        tag_size_m=args.tag_size,
        tag_family=args.tag_family,
        max_frames=args.max_frames,
        workers=args.workers,
        frame_timeout_sec=args.frame_timeout,
        partial_output=False if args.no_partial_output else None,
        log_file=args.log_file,
        log_level=args.log_level,
    )
    return cfg


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    cfg = load_config(args.config) if args.config else TrackerConfig()
    cfg = _apply_args(cfg, args)
    if not cfg.video_path:
        ap.error("a video is required (--video or video_path in --config)")

    logger = setup_logger("run", cfg.log_level, Path(cfg.video_path).name)
    worker = TrackerWorker(cfg, logger=logger)
    try:
        summary = worker.run()
    except (TrackerError, FileNotFoundError, ValueError) as exc:
        logger.error("run failed: %s", exc)
        return 1

    if summary.error is not None:
        logger.error("run incomplete: %s", summary.error)
        return 1
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
