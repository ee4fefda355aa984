from .extractor import MarkerPoseExtractor
from .services.calib import TagParams
from .strategies.detect_tags import TagDetect
from .strategies.localize_pnp import PnPLocalize

class StrategyFactory:
    @staticmethod
    def build_extractor(family: str, params: TagParams) -> MarkerPoseExtractor:
        # One compiled detector per extractor; do not share across threads
        return MarkerPoseExtractor(TagDetect(family), PnPLocalize(params))
