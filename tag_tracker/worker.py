from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from tag_pipeline.assembler import FrameRecordAssembler
from tag_pipeline.errors import DecodeFailure, DetectionTimeout
from tag_pipeline.services.calib import TagParams, load_calibration
from tag_pipeline.strategies.luma import LumaConvert
from tag_pipeline.strategies.video_decode import VideoFrameSource
from tag_pipeline.tp_types import DecodedFrame, MarkerPose

from .config import TrackerConfig
from .detect import DetectorPool
from .logging_utils import add_file_handler, setup_logger


def _video_name(config: TrackerConfig) -> Optional[str]:
    return Path(config.video_path).name if config.video_path else None


@dataclass
class RunSummary:
    output_path: Optional[str]
    frames_processed: int
    frames_skipped: int
    poses_written: int
    avg_fps: float
    error: Optional[str] = None


class _Pending:
    """A submitted frame; its timeout counts from when a worker picks it up."""

    def __init__(self, frame: DecodedFrame):
        self.frame = frame
        self.future: Optional[Future] = None
        self.started = threading.Event()
        self.t_start: Optional[float] = None


class TrackerWorker:
    """Runs one video through decode -> luma -> detect -> record.

    With ``workers <= 1`` every frame completes before the next is decoded. With
    more workers, decoding stays on the calling thread and conversion plus
    detection run on a thread pool, one detector per thread. Records are always
    assembled in decode order.
    """

    def __init__(self, config: TrackerConfig, logger=None, source=None):
        self.config = config
        self.logger = logger or setup_logger("run", config.log_level, _video_name(config))
        self.source = source
        self.conv = LumaConvert()
        self.pool: Optional[DetectorPool] = None
        self.skipped = 0
        self._timed_out: list[_Pending] = []

    def _process(self, f: DecodedFrame) -> tuple[list[MarkerPose], int]:
        ext = self.pool.get()
        luma = self.conv.apply(f)
        poses = ext.extract(luma)
        return poses, ext.last_detection_count

    def _record(self, f: DecodedFrame, poses, n_dets: int, assembler: FrameRecordAssembler) -> None:
        assembler.add(f.idx, f.t, poses)
        self.logger.debug(
            "t=%.3f frame=%d tags=%d poses=%d", f.t, f.idx, n_dets, len(poses)
        )

    def _frames(self, source) -> Iterator[DecodedFrame]:
        frames = iter(source)
        if self.config.max_frames is not None:
            frames = itertools.islice(frames, self.config.max_frames)
        return frames

    def _run_sequential(self, frames, assembler: FrameRecordAssembler) -> None:
        for f in frames:
            poses, n_dets = self._process(f)
            self._record(f, poses, n_dets, assembler)

    def _timed(self, task: _Pending) -> tuple[list[MarkerPose], int]:
        task.t_start = time.monotonic()
        task.started.set()
        return self._process(task.frame)

    def _wait_started(self, task: _Pending) -> bool:
        # A frame waiting for a free worker is not on the clock, unless every
        # worker is held by a frame that already timed out.
        while not task.started.wait(0.05):
            if task.future.done():
                return True
            stuck = sum(1 for t in self._timed_out if not t.future.done())
            if stuck >= self.config.workers:
                return False
        return True

    def _collect(self, task: _Pending, assembler: FrameRecordAssembler) -> bool:
        f = task.frame
        timeout = self.config.frame_timeout_sec
        try:
            if timeout is None:
                poses, n_dets = task.future.result()
            else:
                if not self._wait_started(task):
                    raise FutureTimeout()
                remaining = max(0.0, task.t_start + timeout - time.monotonic())
                poses, n_dets = task.future.result(timeout=remaining)
        except FutureTimeout:
            task.future.cancel()
            self._timed_out.append(task)
            err = DetectionTimeout(
                f"frame {f.idx} not processed within {timeout}s", f.idx
            )
            self.logger.warning("%s; frame skipped", err)
            self.skipped += 1
            return False
        self._record(f, poses, n_dets, assembler)
        return True

    def _run_parallel(self, frames, assembler: FrameRecordAssembler) -> None:
        workers = self.config.workers
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tag-detect")
        window: deque = deque()
        self._timed_out = []
        try:
            for f in frames:
                task = _Pending(f)
                task.future = executor.submit(self._timed, task)
                window.append(task)
                while len(window) >= 2 * workers:
                    self._collect(window.popleft(), assembler)
        finally:
            try:
                # Frames already decoded are still assembled when decoding fails
                while window:
                    self._collect(window.popleft(), assembler)
            finally:
                stalled = any(not t.future.done() for t in self._timed_out)
                executor.shutdown(wait=not stalled, cancel_futures=True)

    def run(self) -> RunSummary:
        cfg = self.config.validate()
        log_handler = None
        if cfg.log_file:
            log_handler = add_file_handler(self.logger, "run", cfg.log_file, _video_name(cfg))

        try:
            calibration = load_calibration(cfg.calibration_path)
            params: TagParams = calibration.to_params(cfg.tag_size_m)
            self.logger.info("Got camera calibration: %s", calibration)

            self.pool = DetectorPool(cfg.tag_family, params)
            # Build the calling thread's detector up front so a bad family fails early
            self.pool.get()

            source = self.source or VideoFrameSource(cfg.video_path)
            assembler = FrameRecordAssembler()
            failure: Optional[DecodeFailure] = None
            self.skipped = 0

            t0 = time.time()
            try:
                with source:
                    self.logger.info(
                        "Found video stream %dx%d fps=%.2f codec=%s",
                        getattr(source, "width", 0),
                        getattr(source, "height", 0),
                        getattr(source, "fps", 0.0),
                        getattr(source, "codec", "") or "?",
                    )
                    frames = self._frames(source)
                    if cfg.workers > 1:
                        self._run_parallel(frames, assembler)
                    else:
                        self._run_sequential(frames, assembler)
            except DecodeFailure as exc:
                failure = exc
                self.logger.error(
                    "decoding stopped after %d frame(s): %s", len(assembler), exc
                )
                if not cfg.partial_output:
                    raise

            elapsed = time.time() - t0
            out = assembler.write(cfg.output_path)
            if failure is not None:
                self.logger.warning("Wrote partial output (%d frames) to %s", len(assembler), out)
            else:
                self.logger.info("Done writing output JSON to %s", out)

            avg = len(assembler) / max(1e-6, elapsed)
            self.logger.info(
                "summary frames=%d skipped=%d poses=%d avg_fps=%.2f",
                len(assembler), self.skipped, assembler.pose_count, avg,
            )
            if failure is not None and cfg.raise_on_decode_error:
                raise failure

            return RunSummary(
                out,
                len(assembler),
                self.skipped,
                assembler.pose_count,
                avg,
                str(failure) if failure is not None else None,
            )
        finally:
            if log_handler is not None:
                self.logger.removeHandler(log_handler)
                log_handler.close()
