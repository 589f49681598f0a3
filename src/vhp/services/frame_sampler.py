"""Frame sampling from a seekable video source.

Seeks are best effort: a seek that does not confirm within the timeout is
logged and the frame is captured anyway. After every seek the sampler
waits a short settle delay so the decoder does not hand back a stale
buffer. A frame that cannot be captured is skipped, never fatal.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import cv2
import numpy as np

from vhp.services.brightness import compute_brightness, dark_frame_decision
from vhp.services.media import VideoSource

logger = logging.getLogger(__name__)

# Used when the container reports no usable duration
FALLBACK_SCAN_OFFSETS: tuple[float, ...] = (0.0, 0.5, 1.0, 1.5, 2.0, 2.5, 3.0)
FALLBACK_EXTRACTION_OFFSETS: tuple[float, ...] = (
    0.0, 0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 10.0, 12.0, 15.0,
)

SEEK_TOLERANCE_S = 0.1
END_MARGIN_S = 0.1

# ~765 tokens per 512x512 image on vision chat models
_TOKENS_PER_REFERENCE_IMAGE = 765
_REFERENCE_PIXELS = 512 * 512


@dataclass
class FrameSample:
    timestamp: float
    width: int
    height: int
    brightness: float
    image: np.ndarray = field(repr=False)
    payload: bytes | None = field(default=None, repr=False)

    def to_base64(self) -> str:
        if self.payload is None:
            raise ValueError(f"Frame at {self.timestamp:.2f}s was not encoded")
        return base64.b64encode(self.payload).decode("ascii")


def duration_is_valid(duration: float | None) -> bool:
    return duration is not None and math.isfinite(duration) and duration > 0


def generate_offsets(
    duration: float,
    interval: float,
    max_frames: int,
    margin: float = END_MARGIN_S,
) -> list[float]:
    """Evenly spaced offsets from 0 up to ``duration - margin``, at most *max_frames*."""
    if interval <= 0:
        raise ValueError("interval must be positive")
    offsets: list[float] = []
    i = 0
    while len(offsets) < max_frames:
        t = round(i * interval, 6)
        if t >= duration - margin:
            break
        offsets.append(t)
        i += 1
    # Clips shorter than the margin still get their first frame
    if not offsets and max_frames > 0:
        offsets.append(0.0)
    return offsets


def plan_offsets(
    duration: float | None,
    interval: float,
    max_frames: int,
    fallback: Sequence[float],
) -> list[float]:
    """Offsets for a scan, or *fallback* when the duration is unknown."""
    if duration_is_valid(duration):
        return generate_offsets(duration, interval, max_frames)
    logger.warning(
        "Video duration unavailable (%s), using %d fallback offsets",
        duration,
        len(fallback),
    )
    return list(fallback)[:max_frames]


class FrameSampler:
    """Captures still frames at requested offsets of a ``VideoSource``."""

    def __init__(
        self,
        *,
        max_dimension: int | None = None,
        jpeg_quality: float = 0.7,
        seek_timeout_ms: int = 300,
        settle_delay_ms: int = 50,
    ) -> None:
        self._max_dimension = max_dimension
        self._quality = int(round(min(max(jpeg_quality, 0.0), 1.0) * 100))
        self._seek_timeout_ms = seek_timeout_ms
        self._settle_delay = settle_delay_ms / 1000.0

    async def seek(
        self, source: VideoSource, seconds: float, timeout_ms: int | None = None
    ) -> bool:
        """Seek *source*; returns False when the seek did not confirm in time.

        A source already within ``SEEK_TOLERANCE_S`` of the target is still
        moved, but without the timeout race.
        """
        if abs(source.position - seconds) < SEEK_TOLERANCE_S:
            await asyncio.to_thread(source.seek, seconds)
            return True
        timeout = (timeout_ms if timeout_ms is not None else self._seek_timeout_ms) / 1000.0
        try:
            await asyncio.wait_for(asyncio.to_thread(source.seek, seconds), timeout)
            return True
        except asyncio.TimeoutError:
            logger.debug("Seek to %.2fs not confirmed after %.0fms", seconds, timeout * 1000)
            return False

    async def capture_at(
        self,
        source: VideoSource,
        seconds: float,
        *,
        encode: bool = True,
        timeout_ms: int | None = None,
    ) -> FrameSample:
        await self.seek(source, seconds, timeout_ms)
        if self._settle_delay > 0:
            await asyncio.sleep(self._settle_delay)
        return await asyncio.to_thread(self._render, source, seconds, encode)

    async def sample(
        self,
        source: VideoSource,
        offsets: Sequence[float],
        seek_timeout_ms: int | None = None,
        *,
        skip_dark: bool = False,
        encode: bool = True,
    ) -> list[FrameSample]:
        """Capture one frame per offset, in offset order; failures are skipped."""
        samples: list[FrameSample] = []
        total = len(offsets)
        for i, t in enumerate(offsets):
            try:
                frame = await self.capture_at(
                    source, t, encode=encode, timeout_ms=seek_timeout_ms
                )
            except Exception as e:
                logger.warning("Failed to capture frame at %.1fs: %s", t, e)
                continue

            if skip_dark:
                decision = dark_frame_decision(frame.brightness, len(samples))
                if decision == "skip":
                    logger.warning(
                        "Frame %d appears very dark (brightness: %.1f), skipping",
                        i + 1,
                        frame.brightness,
                    )
                    continue
                if decision == "keep_dark":
                    logger.warning(
                        "Frame %d appears very dark (brightness: %.1f), keeping as first frame",
                        i + 1,
                        frame.brightness,
                    )

            samples.append(frame)
            logger.debug(
                "Frame %d/%d captured (%.2fs, brightness: %.1f)",
                i + 1,
                total,
                t,
                frame.brightness,
            )
        return samples

    async def sample_video(
        self,
        source: VideoSource,
        frames_per_second: float,
        max_frames: int,
        *,
        skip_dark: bool = True,
    ) -> list[FrameSample]:
        """Sample *source* at *frames_per_second*, capped at *max_frames*."""
        offsets = plan_offsets(
            source.duration, 1.0 / frames_per_second, max_frames, FALLBACK_EXTRACTION_OFFSETS
        )
        logger.info(
            "Extracting up to %d frames at: %s",
            len(offsets),
            ", ".join(f"{t:.1f}s" for t in offsets),
        )
        return await self.sample(source, offsets, skip_dark=skip_dark)

    # -- internal --------------------------------------------------------

    def _render(self, source: VideoSource, seconds: float, encode: bool) -> FrameSample:
        image = self._fit(source.read_frame())
        height, width = image.shape[:2]
        payload = self._encode(image) if encode else None
        return FrameSample(
            timestamp=seconds,
            width=width,
            height=height,
            brightness=compute_brightness(image),
            image=image,
            payload=payload,
        )

    def _fit(self, image: np.ndarray) -> np.ndarray:
        """Downscale so the longer side is at most max_dimension; never upscale."""
        if not self._max_dimension:
            return image
        height, width = image.shape[:2]
        longest = max(width, height)
        if longest <= self._max_dimension:
            return image
        scale = self._max_dimension / longest
        size = (max(1, round(width * scale)), max(1, round(height * scale)))
        return cv2.resize(image, size, interpolation=cv2.INTER_AREA)

    def _encode(self, image: np.ndarray) -> bytes:
        ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self._quality])
        if not ok:
            raise ValueError("JPEG encoding failed")
        return buf.tobytes()


def estimate_token_usage(samples: Sequence[FrameSample]) -> int:
    """Rough vision-model token cost of sending *samples*."""
    return sum(
        round(_TOKENS_PER_REFERENCE_IMAGE * (s.width * s.height) / _REFERENCE_PIXELS)
        for s in samples
    )


def frame_preview(samples: Sequence[FrameSample]) -> str:
    if not samples:
        return "No frames extracted"
    sizes = ", ".join(
        f"{len(s.payload or b'') / 1024:.1f}KB" for s in samples[:5]
    )
    return f"Extracted {len(samples)} frames. Sample frame sizes: {sizes}"
