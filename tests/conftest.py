from pathlib import Path

import cv2
import numpy as np
import pytest

from tag_pipeline.errors import DecodeFailure
from tag_pipeline.tp_types import DecodedFrame

# Fronto-parallel scene: a 0.1 m tag drawn 200 px wide at 800 px focal length
# sits 0.4 m in front of the camera, centred on the principal point.
FOCAL_PX = 800.0
CENTER = (319.5, 239.5)
TAG_SIZE_M = 0.1
TAG_SIDE_PX = 200
FRAME_SHAPE = (480, 640)


def _tag_image(marker_id=7, family="DICT_APRILTAG_36h11", top_left=(220, 140)):
    dictionary = cv2.aruco.getPredefinedDictionary(getattr(cv2.aruco, family))
    marker = cv2.aruco.generateImageMarker(dictionary, marker_id, TAG_SIDE_PX, borderBits=1)
    canvas = np.full(FRAME_SHAPE, 255, dtype=np.uint8)
    x, y = top_left
    canvas[y:y + TAG_SIDE_PX, x:x + TAG_SIDE_PX] = marker
    return canvas


@pytest.fixture
def tag_gray():
    """Factory for a grayscale frame holding one tag."""
    return _tag_image


@pytest.fixture
def tag_bgr():
    """Factory for a BGR frame holding one tag."""
    def _make(**kwargs):
        return cv2.cvtColor(_tag_image(**kwargs), cv2.COLOR_GRAY2BGR)
    return _make


@pytest.fixture
def blank_bgr():
    return np.full(FRAME_SHAPE + (3,), 255, dtype=np.uint8)


@pytest.fixture
def calib_file(tmp_path: Path) -> Path:
    path = tmp_path / "camera.toml"
    path.write_text(
        "\n".join(
            [
                f"focal_x_pixels = {FOCAL_PX}",
                f"focal_y_pixels = {FOCAL_PX}",
                f"principal_point_x_pixels = {CENTER[0]}",
                f"principal_point_y_pixels = {CENTER[1]}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return path


class FakeSource:
    def __init__(self, images, fps=10.0, fail_after=None):
        """Serve images as decoded frames, optionally failing once they run out."""
        self.images = list(images)
        self.fps = fps
        self.fail_after = fail_after
        self.width = FRAME_SHAPE[1]
        self.height = FRAME_SHAPE[0]
        self.codec = "fake"
        self.opened = False
        self.closed = False

    def __enter__(self):
        """Mark the source as opened."""
        self.opened = True
        return self

    def __exit__(self, *exc):
        """Mark the source as closed."""
        self.closed = True

    def __iter__(self):
        """Yield frames, then raise DecodeFailure if asked to."""
        for i, img in enumerate(self.images):
            if self.fail_after is not None and i >= self.fail_after:
                raise DecodeFailure(f"corrupt packet at frame {i}")
            yield DecodedFrame(i, i / self.fps, img, "bgr")
        if self.fail_after is not None and self.fail_after >= len(self.images):
            raise DecodeFailure("corrupt packet at end of stream")


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def scene():
    """Ground truth for frames built by tag_gray/tag_bgr with default arguments."""
    return {
        "focal_px": FOCAL_PX,
        "center": CENTER,
        "tag_size": TAG_SIZE_M,
        "translation": (0.0, 0.0, FOCAL_PX * TAG_SIZE_M / TAG_SIDE_PX),
        "rotation": np.eye(3),
    }


@pytest.fixture
def rotation_angle():
    """Angle in radians of the rotation taking one 3x3 (or row-major 9) rotation to another."""
    def _angle(R_a, R_b):
        R_a = np.asarray(R_a, dtype=np.float64).reshape(3, 3)
        R_b = np.asarray(R_b, dtype=np.float64).reshape(3, 3)
        cos = (np.trace(R_a.T @ R_b) - 1.0) / 2.0
        return float(np.arccos(np.clip(cos, -1.0, 1.0)))
    return _angle
