"""Rotation utilities for tag pose handling."""

import numpy as np
import cv2


def rvec_to_rotation_matrix(rvec: np.ndarray) -> np.ndarray:
    """
    Convert a rotation vector to a 3x3 rotation matrix.

    Args:
        rvec: Rotation vector (3,) or (3,1)

    Returns:
        3x3 rotation matrix
    """
    rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
    R, _ = cv2.Rodrigues(rvec)
    return R
