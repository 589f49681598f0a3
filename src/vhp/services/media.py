"""Media blobs, upload validation and OpenCV-backed decoding.

A ``MediaBlob`` is what the browser recorded: raw bytes plus the MIME type
it declared. The pipeline only reads blobs. Videos are opened as a
``VideoSource`` (seekable, frame-at-a-time); photos are decoded straight
to a BGR ``numpy`` array.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import tempfile
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import cv2
import numpy as np

from vhp.exceptions import FrameCaptureError, MediaValidationError

logger = logging.getLogger(__name__)

KB = 1024
MB = 1024 * 1024

_VIDEO_SUFFIXES = {
    "video/webm": ".webm",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-matroska": ".mkv",
    "video/ogg": ".ogv",
}


@dataclass(frozen=True)
class MediaBlob:
    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    def describe(self) -> str:
        if self.size >= MB:
            return f"{self.mime_type or 'unknown'}, {self.size / MB:.2f} MB"
        return f"{self.mime_type or 'unknown'}, {self.size / KB:.2f} KB"


def _format_mb(size: int) -> str:
    return f"{size / MB:.1f}MB"


def validate_video_blob(
    blob: MediaBlob, *, min_bytes: int = KB, max_bytes: int = 100 * MB
) -> tuple[bool, str]:
    """Check MIME prefix and size bounds. Returns ``(ok, user-facing message)``."""
    if not blob.mime_type.startswith("video/"):
        return False, "Invalid video format - not a video file"
    if blob.size < min_bytes:
        return False, f"Video file too small (less than {min_bytes // KB}KB)"
    if blob.size > max_bytes:
        return False, (
            f"Video file too large ({_format_mb(blob.size)} > {_format_mb(max_bytes)})"
        )
    return True, "Video file is valid"


def validate_photo_blob(
    blob: MediaBlob, *, min_bytes: int = KB, max_bytes: int = 10 * MB
) -> tuple[bool, str]:
    """Check MIME prefix and size bounds. Returns ``(ok, user-facing message)``."""
    if not blob.mime_type.startswith("image/"):
        return False, "Invalid image format - not an image file"
    if blob.size < min_bytes:
        return False, f"Photo file too small (less than {min_bytes // KB}KB)"
    if blob.size > max_bytes:
        return False, (
            f"Photo file too large ({_format_mb(blob.size)} > {_format_mb(max_bytes)})"
        )
    return True, "Photo file is valid"


def _decode(data: bytes) -> np.ndarray:
    buf = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if image is None:
        raise MediaValidationError("Failed to load image - file may be corrupted")
    return image


async def decode_image(blob: MediaBlob, timeout_s: float = 5.0) -> np.ndarray:
    """Decode a photo blob to a BGR array, bounded by a hard timeout."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(_decode, blob.data), timeout_s)
    except asyncio.TimeoutError:
        raise MediaValidationError("Image loading timeout - file may be corrupted")


@runtime_checkable
class VideoSource(Protocol):
    """A seekable video. ``duration`` may be ``nan`` when metadata is missing."""

    duration: float
    width: int
    height: int

    @property
    def position(self) -> float: ...

    def seek(self, seconds: float) -> None: ...

    def read_frame(self) -> np.ndarray: ...

    def close(self) -> None: ...


class OpenCVVideoSource:
    """``cv2.VideoCapture`` over a temporary copy of the blob.

    Seek and read are serialised; one run drives one source at a time.
    """

    def __init__(self, path: Path, *, owns_file: bool = False) -> None:
        self._path = path
        self._owns_file = owns_file
        # a seek that outlived its timeout must finish before the next read
        self._lock = threading.Lock()
        self._cap = cv2.VideoCapture(str(path))
        if not self._cap.isOpened():
            self.close()
            raise MediaValidationError("Failed to load video - file may be corrupted")

        self.width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = self._cap.get(cv2.CAP_PROP_FPS)
        frame_count = self._cap.get(cv2.CAP_PROP_FRAME_COUNT)
        # MediaRecorder WebM files usually carry no frame count
        if fps and fps > 0 and frame_count and frame_count > 0:
            self.duration = frame_count / fps
        else:
            self.duration = math.nan
        logger.info(
            "Video opened: %dx%d, duration: %.2fs", self.width, self.height, self.duration
        )

    @classmethod
    def from_blob(cls, blob: MediaBlob, tmp_dir: Path | None = None) -> OpenCVVideoSource:
        suffix = _VIDEO_SUFFIXES.get(blob.mime_type.split(";")[0].strip(), ".bin")
        fd, name = tempfile.mkstemp(suffix=suffix, dir=tmp_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(blob.data)
        try:
            return cls(Path(name), owns_file=True)
        except cv2.error:
            Path(name).unlink(missing_ok=True)
            raise

    @property
    def position(self) -> float:
        return self._cap.get(cv2.CAP_PROP_POS_MSEC) / 1000.0

    def seek(self, seconds: float) -> None:
        with self._lock:
            self._cap.set(cv2.CAP_PROP_POS_MSEC, seconds * 1000.0)

    def read_frame(self) -> np.ndarray:
        with self._lock:
            ok, frame = self._cap.read()
        if not ok or frame is None:
            raise FrameCaptureError(f"No frame available at {self.position:.2f}s")
        return frame

    def close(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
        if self._owns_file:
            self._path.unlink(missing_ok=True)

    def __enter__(self) -> OpenCVVideoSource:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


async def open_video_source(
    blob: MediaBlob, timeout_s: float = 10.0, tmp_dir: Path | None = None
) -> OpenCVVideoSource:
    """Open *blob* off the event loop; a stalled demuxer fails the caller.

    The worker thread cannot be interrupted, so a source it opens after the
    timeout is closed as soon as it arrives.
    """
    job = asyncio.ensure_future(asyncio.to_thread(OpenCVVideoSource.from_blob, blob, tmp_dir))
    try:
        return await asyncio.wait_for(asyncio.shield(job), timeout_s)
    except asyncio.TimeoutError:
        job.add_done_callback(_close_late_source)
        raise MediaValidationError("Video loading timeout - file may be corrupted")
    except asyncio.CancelledError:
        job.add_done_callback(_close_late_source)
        raise


def _close_late_source(job: asyncio.Future) -> None:
    if job.cancelled() or job.exception() is not None:
        return
    logger.warning("Closing video source that finished opening after the timeout")
    job.result().close()


VideoOpener = Callable[[MediaBlob], Awaitable[VideoSource]]
