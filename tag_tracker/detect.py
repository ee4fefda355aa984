import threading

from tag_pipeline.extractor import MarkerPoseExtractor
from tag_pipeline.factory import StrategyFactory
from tag_pipeline.services.calib import TagParams


class DetectorPool:
    """Hands each thread its own extractor, built from the same family and params.

    The compiled detector is not safe for concurrent use, so instances are never
    shared between threads.
    """

    def __init__(self, family: str, params: TagParams):
        self.family = family
        self.params = params
        self._local = threading.local()
        self._lock = threading.Lock()
        self.built = 0

    def get(self) -> MarkerPoseExtractor:
        ext = getattr(self._local, "extractor", None)
        if ext is None:
            ext = StrategyFactory.build_extractor(self.family, self.params)
            self._local.extractor = ext
            with self._lock:
                self.built += 1
        return ext
