"""Offline tag pose extraction from recorded video."""

from .config import TrackerConfig
from .worker import RunSummary, TrackerWorker

__all__ = ["RunSummary", "TrackerConfig", "TrackerWorker"]
