"""Error kinds raised by the tag pipeline.

Every error records the pipeline stage it came from. The underlying cause, when
there is one, is chained with ``raise ... from exc``.
"""

from __future__ import annotations

from typing import Optional


class TrackerError(Exception):
    stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class MalformedCalibration(TrackerError, ValueError):
    stage = "calibration"


class InvalidTagSize(TrackerError, ValueError):
    stage = "calibration"


class CalibrationError(TrackerError):
    stage = "calibration"


class UnknownMarkerFamily(TrackerError, ValueError):
    stage = "detect"


class NoVideoStream(TrackerError):
    stage = "decode"


class UnsupportedCodec(TrackerError):
    stage = "decode"


class DecodeFailure(TrackerError):
    """The decoder session is unusable; no further frames can be pulled."""

    stage = "decode"


class DetectionTimeout(TrackerError):
    stage = "detect"

    def __init__(self, message: str, frame_idx: int):
        super().__init__(message)
        self.frame_idx = frame_idx


class OutputWriteError(TrackerError):
    stage = "output"
