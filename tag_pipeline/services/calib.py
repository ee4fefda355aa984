from __future__ import annotations

import json
import math
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

import cv2
import numpy as np
import yaml

from ..errors import CalibrationError, InvalidTagSize, MalformedCalibration

FIELDS = (
    "focal_x_pixels",
    "focal_y_pixels",
    "principal_point_x_pixels",
    "principal_point_y_pixels",
)

# Inner corners of the standard OpenCV pattern (doc/pattern.png)
CHESSBOARD_COLS = 6
CHESSBOARD_ROWS = 9


@dataclass(frozen=True)
class TagParams:
    tag_size: float
    fx: float
    fy: float
    cx: float
    cy: float

    @property
    def camera_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass(frozen=True)
class Calibration:
    focal_x_pixels: float
    focal_y_pixels: float
    principal_point_x_pixels: float
    principal_point_y_pixels: float

    def __str__(self) -> str:
        return (
            f"(fx: {self.focal_x_pixels}, fy: {self.focal_y_pixels}, "
            f"px: {self.principal_point_x_pixels}, py: {self.principal_point_y_pixels})"
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Calibration":
        if not isinstance(raw, Mapping):
            raise MalformedCalibration("calibration root must be a mapping")
        values = {}
        for name in FIELDS:
            if name not in raw:
                raise MalformedCalibration(f"missing field: {name}")
            value = raw[name]
            if isinstance(value, bool):
                raise MalformedCalibration(f"{name} must be a number, got {value!r}")
            try:
                value = float(value)
            except (TypeError, ValueError) as exc:
                raise MalformedCalibration(f"{name} must be a number, got {value!r}") from exc
            if not math.isfinite(value) or value <= 0:
                raise MalformedCalibration(f"{name} must be positive and finite, got {value}")
            values[name] = value
        return cls(**values)

    @classmethod
    def from_camera_matrix(cls, K) -> "Calibration":
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise MalformedCalibration(f"camera matrix must be 3x3, got {K.shape}")
        return cls.from_mapping(
            {
                "focal_x_pixels": K[0, 0],
                "focal_y_pixels": K[1, 1],
                "principal_point_x_pixels": K[0, 2],
                "principal_point_y_pixels": K[1, 2],
            }
        )

    def as_dict(self) -> dict[str, float]:
        return asdict(self)

    def to_params(self, tag_size: float) -> TagParams:
        try:
            size = float(tag_size)
        except (TypeError, ValueError) as exc:
            raise InvalidTagSize(f"tag size must be a number, got {tag_size!r}") from exc
        if not math.isfinite(size) or size <= 0:
            raise InvalidTagSize(f"tag size must be positive, got {tag_size}")
        return TagParams(
            tag_size=size,
            fx=self.focal_x_pixels,
            fy=self.focal_y_pixels,
            cx=self.principal_point_x_pixels,
            cy=self.principal_point_y_pixels,
        )


def _load_opencv_storage(path: Path) -> Calibration:
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    try:
        K = fs.getNode("camera_matrix").mat()
    finally:
        fs.release()
    if K is None:
        raise MalformedCalibration(f"no camera_matrix node in {path}")
    return Calibration.from_camera_matrix(K)


def load_calibration(path: str | Path) -> Calibration:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Calibration not found: {p}")

    suffix = p.suffix.lower()
    try:
        text = p.read_text(encoding="utf-8")
        if suffix in {".yaml", ".yml"}:
            if text.lstrip().startswith("%YAML:1.0"):
                return _load_opencv_storage(p)
            raw = yaml.safe_load(text)
        elif suffix == ".json":
            raw = json.loads(text)
        else:
            raw = tomllib.loads(text)
    except MalformedCalibration:
        raise
    except (ValueError, yaml.YAMLError, cv2.error) as exc:
        raise MalformedCalibration(f"cannot parse {p}: {exc}") from exc
    return Calibration.from_mapping(raw)


def save_calibration(calibration: Calibration, path: str | Path) -> Path:
    p = Path(path)
    suffix = p.suffix.lower()
    data = calibration.as_dict()
    if suffix in {".yaml", ".yml"}:
        text = yaml.safe_dump(data, sort_keys=False)
    elif suffix == ".json":
        text = json.dumps(data, indent=2)
    else:
        raise ValueError(f"unsupported calibration format: {p.suffix or '(none)'}")
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def calibrate_from_images(
    directory: str | Path,
    board: tuple[int, int] = (CHESSBOARD_COLS, CHESSBOARD_ROWS),
    square_size: float = 1.0,
    logger=None,
) -> Calibration:
    """Solve camera intrinsics from chessboard photographs.

    Every ``*.jpg`` in ``directory`` is tried; images without a full board are
    skipped. Only the camera matrix is kept, distortion is discarded.
    """
    d = Path(directory)
    if not d.is_dir():
        raise FileNotFoundError(f"Calibration image directory not found: {d}")
    images = sorted(p for p in d.iterdir() if p.suffix.lower() == ".jpg")
    if logger is not None:
        logger.info("Found %d calibration images", len(images))

    cols, rows = board
    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.001)

    # Z=0 board points
    objp = np.zeros((rows * cols, 3), np.float32)
    objp[:, :2] = np.mgrid[0:cols, 0:rows].T.reshape(-1, 2)
    objp *= square_size

    objpoints = []
    imgpoints = []
    img_size = None
    for path in images:
        img = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if img is None:
            if logger is not None:
                logger.warning("cannot read %s", path.name)
            continue
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        img_size = gray.shape[::-1]
        ok, corners = cv2.findChessboardCorners(gray, (cols, rows))
        if not ok:
            if logger is not None:
                logger.info("no board in %s", path.name)
            continue
        corners = cv2.cornerSubPix(gray, corners, (11, 11), (-1, -1), criteria)
        objpoints.append(objp)
        imgpoints.append(corners)

    if not imgpoints:
        raise CalibrationError(f"no chessboard found in {len(images)} image(s) under {d}")

    rms, K, _dist, _rvecs, _tvecs = cv2.calibrateCamera(
        objpoints, imgpoints, img_size, None, None
    )
    if logger is not None:
        logger.info("boards=%d/%d rms=%.4f", len(imgpoints), len(images), rms)
    return Calibration.from_camera_matrix(K)
