"""Decoded frames from a recorded video file.

PyAV owns the demuxer and decoder. Packets of the selected video stream are fed
to the decoder one at a time; a packet may yield zero, one or several frames,
and packets of other streams are never read into the decoder. Timestamps are
``pts * time_base`` of the stream, with no start-time offset removed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator

import av

from ..errors import DecodeFailure, NoVideoStream, UnsupportedCodec
from ..tp_types import DecodedFrame


class VideoFrameSource:
    """Finite, forward-only sequence of decoded frames.

    The container and its decoder are owned by this object and must only be
    touched from the thread that iterates it. Iterating twice raises
    ``RuntimeError``.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.container: Any = None
        self.stream: Any = None
        self.time_base = None
        self.width = 0
        self.height = 0
        self.fps = 0.0
        self.codec = ""
        self.frames_read = 0
        self._consumed = False

    def open(self) -> "VideoFrameSource":
        if not self.path.exists():
            raise FileNotFoundError(f"Video not found: {self.path}")

        try:
            self.container = av.open(str(self.path))
        except av.error.FFmpegError as exc:
            raise NoVideoStream(f"cannot open {self.path} as a media container: {exc}") from exc

        if not self.container.streams.video:
            self.close()
            raise NoVideoStream(f"no video stream in {self.path}")
        self.stream = self.container.streams.video[0]
        self.time_base = self.stream.time_base

        ctx = self.stream.codec_context
        if ctx is None:
            self.close()
            raise UnsupportedCodec(f"no decoder available for the video stream in {self.path}")
        self.codec = ctx.name or ""
        self.width = int(ctx.width or 0)
        self.height = int(ctx.height or 0)
        rate = self.stream.average_rate
        self.fps = float(rate) if rate else 0.0

        if self.width <= 0 or self.height <= 0:
            self.close()
            raise UnsupportedCodec(
                f"decoder for {self.codec or 'unknown codec'} could not be initialised for {self.path}"
            )
        return self

    def _timestamp(self, frame) -> float:
        if frame.pts is None or self.time_base is None:
            return 0.0
        return float(frame.pts * self.time_base)

    def frames(self) -> Iterator[DecodedFrame]:
        if self._consumed:
            raise RuntimeError("frame source can only be traversed once")
        self._consumed = True
        if self.container is None:
            self.open()
        return self._pull()

    __iter__ = frames

    def _decoded(self) -> Iterator[Any]:
        # demux() ends with an empty packet that drains the decoder
        try:
            for packet in self.container.demux(self.stream):
                for frame in packet.decode():
                    yield frame
        except av.error.FFmpegError as exc:
            raise DecodeFailure(
                f"decoder failed after {self.frames_read} frame(s): {exc}"
            ) from exc

    def _pull(self) -> Iterator[DecodedFrame]:
        for frame in self._decoded():
            try:
                img = frame.to_ndarray(format="rgb24")
            except (av.error.FFmpegError, ValueError) as exc:
                raise DecodeFailure(
                    f"frame {self.frames_read} could not be converted: {exc}"
                ) from exc

            out = DecodedFrame(self.frames_read, self._timestamp(frame), img, "rgb")
            self.frames_read += 1
            yield out

    def close(self) -> None:
        if self.container is not None:
            self.container.close()
            self.container = None

    def __enter__(self) -> "VideoFrameSource":
        if self.container is None:
            self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
