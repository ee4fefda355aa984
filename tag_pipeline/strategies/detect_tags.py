import cv2
import numpy as np

from ..errors import UnknownMarkerFamily
from ..tp_types import Detection

_APRILTAG = {
    "tag16h5": "DICT_APRILTAG_16h5",
    "tag25h9": "DICT_APRILTAG_25h9",
    "tag36h10": "DICT_APRILTAG_36h10",
    "tag36h11": "DICT_APRILTAG_36h11",
}


def family_names() -> list[str]:
    names = list(_APRILTAG)
    for bits in (4, 5, 6, 7):
        for count in (50, 100, 250, 1000):
            names.append(f"{bits}x{bits}_{count}")
    names.append("aruco_original")
    return names


def get_dict(name: str):
    """
    Resolve a marker family name to an OpenCV predefined dictionary.
    Accepts AprilTag names (tag36h11, apriltag_36h11) and ArUco names
    (4x4_50, DICT_4X4_50). Matching is case insensitive.
    """
    key = (name or "").strip()
    if key.upper().startswith("DICT_"):
        key = key[5:]
    key = key.lower()
    if key.startswith("apriltag_"):
        key = "tag" + key[len("apriltag_"):]

    if key in _APRILTAG:
        attr = _APRILTAG[key]
    elif key in family_names():
        attr = f"DICT_{key.upper()}"
    else:
        raise UnknownMarkerFamily(
            f"unknown marker family {name!r}; expected one of {', '.join(family_names())}"
        )

    code = getattr(cv2.aruco, attr, None)
    if code is None:
        raise UnknownMarkerFamily(f"marker family {name!r} is not available in this OpenCV build")
    return cv2.aruco.getPredefinedDictionary(code)


def _make_params():
    params = cv2.aruco.DetectorParameters()
    params.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_SUBPIX
    return params


class TagDetect:
    """
    Detect fiducial markers in a luma buffer.
    Holds a compiled detector for one family; build once and reuse it. Not safe
    for concurrent calls, give each thread its own instance.
    """
    def __init__(self, family: str = "tag36h11"):
        self.family = family
        self.dictionary = get_dict(family)
        self.params = _make_params()
        self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

    def detect(self, luma: np.ndarray) -> list[Detection]:
        corners, ids, _rej = self._detector.detectMarkers(luma)

        dets: list[Detection] = []
        if ids is not None and len(ids) > 0:
            for i, mid in enumerate(ids.flatten()):
                dets.append(Detection(int(mid), np.asarray(corners[i], dtype=np.float32).reshape(4, 2)))
        return dets
