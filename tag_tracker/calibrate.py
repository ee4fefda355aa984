import argparse
import sys

from tag_pipeline.errors import CalibrationError
from tag_pipeline.services.calib import (
    CHESSBOARD_COLS,
    CHESSBOARD_ROWS,
    calibrate_from_images,
    save_calibration,
)

from .logging_utils import setup_logger


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Solve camera intrinsics from chessboard photos")
    ap.add_argument("-i", "--images-path", default="calibration",
                    help="Folder containing .JPGs of chessboard calibration patterns")
    ap.add_argument("-o", "--output-file", default="camera.yml",
                    help="File to store calibration parameters in (.yml/.yaml/.json)")
    ap.add_argument("--board-cols", type=int, default=CHESSBOARD_COLS, help="Inner corners across")
    ap.add_argument("--board-rows", type=int, default=CHESSBOARD_ROWS, help="Inner corners down")
    ap.add_argument("--square-size", type=float, default=1.0, help="Chessboard square edge length")
    return ap


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    logger = setup_logger("calibrate")

    try:
        calibration = calibrate_from_images(
            args.images_path,
            board=(args.board_cols, args.board_rows),
            square_size=args.square_size,
            logger=logger,
        )
        path = save_calibration(calibration, args.output_file)
    except (CalibrationError, FileNotFoundError, ValueError, OSError) as exc:
        logger.error("calibration failed: %s", exc)
        return 1

    logger.info("Calibration %s written to %s", calibration, path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
