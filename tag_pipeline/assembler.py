from typing import Iterable, Optional

from .services.json_writer import JsonWriter
from .tp_types import FrameRecord, MarkerPose


class FrameRecordAssembler:
    """Accumulates one FrameRecord per decoded frame, in decode order."""

    def __init__(self):
        self._records: list[FrameRecord] = []

    def add(self, frame_idx: int, t: float, poses: Iterable[MarkerPose]) -> FrameRecord:
        record = FrameRecord(int(frame_idx), float(t), tuple(poses))
        self._records.append(record)
        return record

    @property
    def records(self) -> tuple[FrameRecord, ...]:
        return tuple(self._records)

    @property
    def pose_count(self) -> int:
        return sum(len(r.poses) for r in self._records)

    def __len__(self) -> int:
        return len(self._records)

    def to_document(self) -> list[dict]:
        return [r.to_dict() for r in self._records]

    def write(self, path: str, indent: Optional[int] = None) -> str:
        return JsonWriter(path, indent=indent).write(self.to_document())
