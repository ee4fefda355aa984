import numpy as np

from .strategies.detect_tags import TagDetect
from .strategies.localize_pnp import PnPLocalize
from .tp_types import MarkerPose


class MarkerPoseExtractor:
    """Detect tags in one luma buffer and keep those with a resolvable pose.

    Poses come back in the detector's order. Detections whose pose cannot be
    solved are dropped.
    """

    def __init__(self, detector: TagDetect, localizer: PnPLocalize):
        self.detector = detector
        self.localizer = localizer
        self.last_detection_count = 0

    def extract(self, luma: np.ndarray) -> list[MarkerPose]:
        dets = self.detector.detect(luma)
        self.last_detection_count = len(dets)
        return self.localizer.estimate(dets)
