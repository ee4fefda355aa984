from dataclasses import dataclass, field
from typing import Any

@dataclass
class DecodedFrame:
    idx: int
    t: float
    image: Any  # (H, W, 3) uint8 ndarray
    channel_order: str = "rgb"

@dataclass
class Detection:
    marker_id: int
    corners: Any  # (4,2) ndarray

@dataclass(frozen=True)
class MarkerPose:
    marker_id: int
    rotation: tuple[float, ...]  # row-major 3x3
    translation: tuple[float, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "marker_id": self.marker_id,
            "pose": {
                "rotation": list(self.rotation),
                "translation": list(self.translation),
            },
        }

@dataclass(frozen=True)
class FrameRecord:
    frame_idx: int
    t: float
    poses: tuple[MarkerPose, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "frame_idx": self.frame_idx,
            "t": self.t,
            "poses": [p.to_dict() for p in self.poses],
        }
