import json
import logging
import time
from pathlib import Path

import pytest

from tag_pipeline.errors import DecodeFailure, UnknownMarkerFamily
from tag_tracker.config import TrackerConfig
from tag_tracker import worker as worker_mod
from tag_tracker.worker import TrackerWorker


@pytest.fixture
def quiet_logger():
    logger = logging.getLogger("tag_tracker.test")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def _config(tmp_path: Path, calib_file: Path, **kwargs) -> TrackerConfig:
    return TrackerConfig(
        video_path=str(tmp_path / "unused.mp4"),
        calibration_path=str(calib_file),
        output_path=str(tmp_path / "poses.json"),
        tag_size_m=0.1,
        tag_family="tag36h11",
        **kwargs,
    )


def _read(path) -> list:
    return json.loads(Path(path).read_text())


def test_sequential_run_records_every_frame(tmp_path, calib_file, fake_source, tag_bgr,
                                            blank_bgr, quiet_logger):
    source = fake_source([blank_bgr, tag_bgr(marker_id=5), blank_bgr])
    cfg = _config(tmp_path, calib_file)

    summary = TrackerWorker(cfg, logger=quiet_logger, source=source).run()
    doc = _read(summary.output_path)

    assert source.opened and source.closed
    assert summary.frames_processed == 3
    assert summary.poses_written == 1
    assert summary.error is None
    assert [r["frame_idx"] for r in doc] == [0, 1, 2]
    assert [r["t"] for r in doc] == pytest.approx([0.0, 0.1, 0.2])
    assert [len(r["poses"]) for r in doc] == [0, 1, 0]
    pose = doc[1]["poses"][0]
    assert pose["marker_id"] == 5
    assert len(pose["pose"]["rotation"]) == 9
    assert len(pose["pose"]["translation"]) == 3


def test_zero_frames_write_empty_document(tmp_path, calib_file, fake_source, quiet_logger):
    cfg = _config(tmp_path, calib_file)
    summary = TrackerWorker(cfg, logger=quiet_logger, source=fake_source([])).run()
    assert summary.frames_processed == 0
    assert _read(cfg.output_path) == []


@pytest.mark.parametrize("workers", [1, 3])
def test_decode_failure_flushes_partial_output(tmp_path, calib_file, fake_source, tag_bgr,
                                               blank_bgr, quiet_logger, workers):
    """Frames assembled before a fatal decode error are written, no more, no fewer."""
    images = [blank_bgr, tag_bgr(), blank_bgr, tag_bgr(), blank_bgr]
    cfg = _config(tmp_path, calib_file, workers=workers)

    summary = TrackerWorker(cfg, logger=quiet_logger, source=fake_source(images, fail_after=3)).run()
    doc = _read(cfg.output_path)

    assert len(doc) == 3
    assert [r["frame_idx"] for r in doc] == [0, 1, 2]
    assert summary.frames_processed == 3
    assert "decode" in summary.error


def test_decode_failure_can_be_raised_after_flush(tmp_path, calib_file, fake_source,
                                                  blank_bgr, quiet_logger):
    cfg = _config(tmp_path, calib_file, raise_on_decode_error=True)
    source = fake_source([blank_bgr, blank_bgr], fail_after=2)
    with pytest.raises(DecodeFailure):
        TrackerWorker(cfg, logger=quiet_logger, source=source).run()
    assert len(_read(cfg.output_path)) == 2


def test_partial_output_disabled_writes_nothing(tmp_path, calib_file, fake_source,
                                                blank_bgr, quiet_logger):
    cfg = _config(tmp_path, calib_file, partial_output=False)
    source = fake_source([blank_bgr], fail_after=1)
    with pytest.raises(DecodeFailure):
        TrackerWorker(cfg, logger=quiet_logger, source=source).run()
    assert not Path(cfg.output_path).exists()


def test_parallel_run_keeps_decode_order(tmp_path, calib_file, fake_source, tag_bgr,
                                         blank_bgr, quiet_logger, monkeypatch):
    """Out-of-order completion must not reorder the output."""
    images = [tag_bgr(marker_id=i) if i % 2 else blank_bgr for i in range(10)]
    orig = TrackerWorker._process

    def uneven(self, f):
        # early frames finish last
        time.sleep(0.02 * (10 - f.idx) / 10)
        return orig(self, f)

    monkeypatch.setattr(TrackerWorker, "_process", uneven)
    cfg = _config(tmp_path, calib_file, workers=4)
    worker = TrackerWorker(cfg, logger=quiet_logger, source=fake_source(images))
    summary = worker.run()
    doc = _read(cfg.output_path)

    assert summary.frames_processed == 10
    assert [r["frame_idx"] for r in doc] == list(range(10))
    for i, rec in enumerate(doc):
        assert [p["marker_id"] for p in rec["poses"]] == ([i] if i % 2 else [])
    # one detector per thread, never more than threads + the caller's
    assert 1 <= worker.pool.built <= cfg.workers + 1


def test_parallel_timeout_skips_frame(tmp_path, calib_file, fake_source, blank_bgr,
                                      quiet_logger, monkeypatch):
    orig = TrackerWorker._process

    def stall_second(self, f):
        if f.idx == 1:
            time.sleep(1.0)
        return orig(self, f)

    monkeypatch.setattr(TrackerWorker, "_process", stall_second)
    cfg = _config(tmp_path, calib_file, workers=3, frame_timeout_sec=0.3)
    summary = TrackerWorker(cfg, logger=quiet_logger, source=fake_source([blank_bgr] * 3)).run()

    assert summary.frames_skipped == 1
    assert [r["frame_idx"] for r in _read(cfg.output_path)] == [0, 2]


def test_queued_frames_are_not_timed_while_waiting(tmp_path, calib_file, fake_source, blank_bgr,
                                                    quiet_logger, monkeypatch):
    """Frames behind a busy pool get the full timeout once a worker takes them."""
    orig = TrackerWorker._process

    def slow(self, f):
        time.sleep(0.2)
        return orig(self, f)

    monkeypatch.setattr(TrackerWorker, "_process", slow)
    cfg = _config(tmp_path, calib_file, workers=2, frame_timeout_sec=0.3)
    summary = TrackerWorker(cfg, logger=quiet_logger, source=fake_source([blank_bgr] * 6)).run()

    assert summary.frames_skipped == 0
    assert [r["frame_idx"] for r in _read(cfg.output_path)] == list(range(6))


def test_pool_shut_down_when_drain_raises(tmp_path, calib_file, fake_source, blank_bgr,
                                          quiet_logger, monkeypatch):
    """An error while draining decoded frames still shuts the thread pool down."""
    orig = TrackerWorker._process
    shutdowns = []

    def boom_on_last(self, f):
        if f.idx == 2:
            raise RuntimeError("detector crashed")
        return orig(self, f)

    real_shutdown = worker_mod.ThreadPoolExecutor.shutdown

    def record_shutdown(executor, wait=True, *, cancel_futures=False):
        shutdowns.append((wait, cancel_futures))
        real_shutdown(executor, wait=wait, cancel_futures=cancel_futures)

    monkeypatch.setattr(TrackerWorker, "_process", boom_on_last)
    monkeypatch.setattr(worker_mod.ThreadPoolExecutor, "shutdown", record_shutdown)
    cfg = _config(tmp_path, calib_file, workers=2)
    source = fake_source([blank_bgr] * 3, fail_after=3)

    with pytest.raises(RuntimeError, match="detector crashed"):
        TrackerWorker(cfg, logger=quiet_logger, source=source).run()
    assert shutdowns == [(True, True)]
    assert source.closed


def test_max_frames_bounds_run(tmp_path, calib_file, fake_source, blank_bgr, quiet_logger):
    cfg = _config(tmp_path, calib_file, max_frames=2)
    summary = TrackerWorker(cfg, logger=quiet_logger, source=fake_source([blank_bgr] * 5)).run()
    assert summary.frames_processed == 2


def test_unknown_family_fails_before_decoding(tmp_path, calib_file, fake_source, quiet_logger):
    cfg = _config(tmp_path, calib_file)
    cfg.tag_family = "tagStandard41h12"
    source = fake_source([])
    with pytest.raises(UnknownMarkerFamily):
        TrackerWorker(cfg, logger=quiet_logger, source=source).run()
    assert not source.opened


def test_log_file_receives_summary(tmp_path, calib_file, fake_source, quiet_logger):
    log_path = tmp_path / "run.log"
    cfg = _config(tmp_path, calib_file, log_file=str(log_path))
    quiet_logger.setLevel(logging.INFO)
    TrackerWorker(cfg, logger=quiet_logger, source=fake_source([])).run()
    text = log_path.read_text()
    assert "Got camera calibration" in text
    assert "summary frames=0" in text
    assert "[run:unused.mp4]" in text
    assert len(quiet_logger.handlers) == 1
