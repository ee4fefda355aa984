from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class TrackerConfig:
    video_path: str = ""
    calibration_path: str = "camera.toml"
    output_path: str = "poses.json"
    tag_size_m: float = 0.011  # internal tag edge length
    tag_family: str = "tag36h11"
    max_frames: Optional[int] = None
    workers: int = 1
    frame_timeout_sec: Optional[float] = None
    partial_output: bool = True  # flush frames decoded before a fatal decode error
    raise_on_decode_error: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def apply_overrides(self, **kwargs: Any) -> "TrackerConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def validate(self) -> "TrackerConfig":
        if not self.video_path:
            raise ValueError("video_path is required")
        if not self.calibration_path:
            raise ValueError("calibration_path is required")
        if not self.output_path:
            raise ValueError("output_path is required")
        if not math.isfinite(self.tag_size_m) or self.tag_size_m <= 0:
            raise ValueError(f"tag_size_m must be positive, got {self.tag_size_m}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.frame_timeout_sec is not None and self.frame_timeout_sec <= 0:
            raise ValueError("frame_timeout_sec must be positive when set")
        if self.max_frames is not None and self.max_frames < 0:
            raise ValueError("max_frames must be >= 0 when set")
        return self


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _optional(value: Any, cast):
    if value is None:
        return None
    return cast(value)


def load_config(path: str | Path) -> TrackerConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = TrackerConfig()
    cfg.video_path = str(raw.get("video_path", cfg.video_path))
    cfg.calibration_path = str(raw.get("calibration_path", cfg.calibration_path))
    cfg.output_path = str(raw.get("output_path", cfg.output_path))
    cfg.tag_size_m = float(raw.get("tag_size_m", cfg.tag_size_m))
    cfg.tag_family = str(raw.get("tag_family", cfg.tag_family))
    cfg.max_frames = _optional(raw.get("max_frames", cfg.max_frames), int)
    cfg.workers = int(raw.get("workers", cfg.workers))
    cfg.frame_timeout_sec = _optional(raw.get("frame_timeout_sec", cfg.frame_timeout_sec), float)
    cfg.partial_output = bool(raw.get("partial_output", cfg.partial_output))
    cfg.raise_on_decode_error = bool(raw.get("raise_on_decode_error", cfg.raise_on_decode_error))
    cfg.log_level = str(raw.get("log_level", cfg.log_level)).upper()
    cfg.log_file = _optional(raw.get("log_file", cfg.log_file), str)

    return cfg
