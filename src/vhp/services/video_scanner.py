"""Video human-presence aggregation with consecutive-detection early stop."""

from __future__ import annotations

import logging

from vhp.schemas.detection import VideoDetectionResult
from vhp.services.frame_sampler import FALLBACK_SCAN_OFFSETS, FrameSampler, plan_offsets
from vhp.services.human_detector import DetectionMode, HumanPresenceClassifier
from vhp.services.media import VideoSource

logger = logging.getLogger(__name__)

MAX_AGGREGATE_CONFIDENCE = 0.95
SUSTAINED_BONUS = 0.10


def aggregate_confidence(best: float, detections: int) -> float:
    """Best single-frame confidence plus a flat bonus for video evidence."""
    if detections <= 0:
        return 0.0
    return min(MAX_AGGREGATE_CONFIDENCE, best + SUSTAINED_BONUS)


class VideoHumanScanner:
    """Walks a video in time order and classifies frames body-first.

    Stops as soon as ``consecutive_threshold`` frames in a row contain a
    person, so ``frames_checked`` is usually far below ``max_frames``.
    """

    def __init__(self, sampler: FrameSampler, classifier: HumanPresenceClassifier) -> None:
        self._sampler = sampler
        self._classifier = classifier

    async def scan_video(
        self,
        source: VideoSource,
        frame_interval_s: float = 0.1,
        min_confidence: float = 0.5,
        max_frames: int = 50,
        consecutive_threshold: int = 2,
        max_detections: int = 5,
    ) -> VideoDetectionResult:
        offsets = plan_offsets(
            source.duration, frame_interval_s, max_frames, FALLBACK_SCAN_OFFSETS
        )
        logger.info("Checking up to %d frames for human presence", len(offsets))

        detections = 0
        best = 0.0
        streak = 0
        longest_streak = 0
        frames_checked = 0
        stopped_early = False

        for t in offsets:
            try:
                frame = await self._sampler.capture_at(source, t, encode=False)
                result = await self._classifier.classify(
                    frame.image,
                    DetectionMode.BODY_FIRST,
                    min_confidence=min_confidence,
                    max_results=max_detections,
                )
            except Exception as e:
                logger.warning("Error processing frame at %.2fs: %s", t, e)
                streak = 0
                continue

            frames_checked += 1
            if result.has_human and result.confidence >= min_confidence:
                detections += 1
                streak += 1
                longest_streak = max(longest_streak, streak)
                best = max(best, result.confidence)
                logger.debug(
                    "Human at %.2fs (%.1f%%, streak %d)", t, result.confidence * 100, streak
                )
                if streak >= consecutive_threshold:
                    stopped_early = True
                    logger.info(
                        "Human detected in %d consecutive frames, stopping at %.2fs",
                        streak,
                        t,
                    )
                    break
            else:
                streak = 0

        has_human = detections > 0
        confidence = aggregate_confidence(best, detections)
        if has_human:
            details = (
                f"Human detected in {detections} of {frames_checked} frames "
                f"({confidence:.0%} confidence)"
            )
        else:
            details = f"No human detected in {frames_checked} frames analyzed"
        logger.info("Video scan finished: %s", details)

        return VideoDetectionResult(
            has_human=has_human,
            confidence=confidence,
            max_confidence=best,
            detection_count=detections,
            frames_checked=frames_checked,
            longest_streak=longest_streak,
            stopped_early=stopped_early,
            details=details,
        )
