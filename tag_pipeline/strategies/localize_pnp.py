from typing import Optional

import cv2, numpy as np

from ..services.calib import TagParams
from ..tp_types import Detection, MarkerPose
from ..transforms import rvec_to_rotation_matrix

MAX_REPROJECTION_PX = 2.0


def square_object_points(tag_size: float) -> np.ndarray:
    """Tag corners in the tag frame, in the order the detector reports them.

    The tag frame has x to the right, y down and z into the tag, so a tag seen
    face-on by the camera has identity rotation.
    """
    h = tag_size / 2.0
    return np.array(
        [[-h, -h, 0.0], [h, -h, 0.0], [h, h, 0.0], [-h, h, 0.0]],
        dtype=np.float64,
    )


def reprojection_rms(objp: np.ndarray, corners: np.ndarray, K: np.ndarray,
                     R: np.ndarray, t: np.ndarray) -> float:
    cam = objp @ R.T + t.reshape(1, 3)
    if np.any(cam[:, 2] <= 0):
        return float("inf")
    proj = cam @ K.T
    px = proj[:, :2] / proj[:, 2:3]
    return float(np.sqrt(np.mean(np.sum((px - corners) ** 2, axis=1))))


class PnPLocalize:
    def __init__(self, params: TagParams, max_reprojection_px: float = MAX_REPROJECTION_PX):
        self.params = params
        self.K = params.camera_matrix
        self.dist = np.zeros((5, 1))
        self.max_reprojection_px = max_reprojection_px
        self._objp = square_object_points(params.tag_size)

    def estimate_one(self, det: Detection) -> Optional[MarkerPose]:
        corners = np.asarray(det.corners, dtype=np.float64).reshape(-1, 2)
        if corners.shape != (4, 2) or not np.all(np.isfinite(corners)):
            return None
        try:
            n, rvecs, tvecs, _ = cv2.solvePnPGeneric(
                self._objp, corners, self.K, self.dist, flags=cv2.SOLVEPNP_IPPE
            )
        except cv2.error:
            return None
        if not n:
            return None

        # IPPE gives up to two solutions; keep the one that reprojects best
        best = None
        for rvec, tvec in zip(rvecs, tvecs):
            R = rvec_to_rotation_matrix(rvec)
            t = np.asarray(tvec, dtype=np.float64).reshape(3)
            if not (np.all(np.isfinite(R)) and np.all(np.isfinite(t))):
                continue
            err = reprojection_rms(self._objp, corners, self.K, R, t)
            if best is None or err < best[0]:
                best = (err, R, t)

        if best is None or not best[0] <= self.max_reprojection_px:
            return None
        _, R, t = best
        return MarkerPose(
            det.marker_id,
            tuple(float(v) for v in R.reshape(9)),
            tuple(float(v) for v in t),
        )

    def estimate(self, detections: list[Detection]) -> list[MarkerPose]:
        poses = []
        for det in detections:
            pose = self.estimate_one(det)
            if pose is not None:
                poses.append(pose)
        return poses
