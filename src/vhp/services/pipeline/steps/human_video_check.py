"""Step 2: a person must be visible in the challenge video."""

from __future__ import annotations

import logging

from vhp.exceptions import MediaValidationError
from vhp.schemas.verification import StepResult, to_percent
from vhp.services.media import KB, MB, VideoOpener, validate_video_blob
from vhp.services.pipeline.base import VerificationContext, report
from vhp.services.video_scanner import VideoHumanScanner
from vhp.utils.types import ProgressCallback

logger = logging.getLogger(__name__)


class HumanVideoCheckStep:
    step_id = "human-video-check"
    name = "Human Detection in Video"
    failure_message = "Human detection failed"

    def __init__(
        self,
        scanner: VideoHumanScanner,
        opener: VideoOpener,
        *,
        frame_interval_s: float = 0.1,
        min_confidence: float = 0.5,
        max_frames: int = 50,
        consecutive_threshold: int = 2,
        max_detections: int = 5,
        min_resolution: int = 100,
        min_bytes: int = KB,
        max_bytes: int = 100 * MB,
    ) -> None:
        self._scanner = scanner
        self._open = opener
        self._frame_interval_s = frame_interval_s
        self._min_confidence = min_confidence
        self._max_frames = max_frames
        self._consecutive_threshold = consecutive_threshold
        self._max_detections = max_detections
        self._min_resolution = min_resolution
        self._min_bytes = min_bytes
        self._max_bytes = max_bytes

    async def execute(
        self,
        ctx: VerificationContext,
        on_progress: ProgressCallback | None = None,
    ) -> StepResult:
        try:
            report(on_progress, 5, "Validating video format...")
            ok, message = validate_video_blob(
                ctx.video, min_bytes=self._min_bytes, max_bytes=self._max_bytes
            )
            if not ok:
                raise MediaValidationError(message)

            report(on_progress, 15, "Loading video for analysis...")
            source = await self._open(ctx.video)
            try:
                if source.width <= 0 or source.height <= 0:
                    raise MediaValidationError("Invalid video dimensions")
                if source.width < self._min_resolution or source.height < self._min_resolution:
                    raise MediaValidationError(
                        "Video resolution too low "
                        f"(minimum {self._min_resolution}x{self._min_resolution})"
                    )

                report(on_progress, 35, "Loading human detection models...")
                detection = await self._scanner.scan_video(
                    source,
                    frame_interval_s=self._frame_interval_s,
                    min_confidence=self._min_confidence,
                    max_frames=self._max_frames,
                    consecutive_threshold=self._consecutive_threshold,
                    max_detections=self._max_detections,
                )
            finally:
                source.close()

            report(on_progress, 90, "Processing human detection results...")
        except Exception as e:
            logger.error("Human video check error: %s", e, exc_info=True)
            report(on_progress, 100, "Human detection failed due to error")
            return StepResult(
                step_id=self.step_id,
                passed=False,
                confidence=0,
                details=f"Human detection error: {e}",
            )

        ctx.video_detection = detection
        passed = detection.has_human and detection.detection_count >= 1
        details = detection.details
        if passed and detection.stopped_early:
            details += " (analysis stopped early - clear human presence detected)"

        report(on_progress, 100, details)
        return StepResult(
            step_id=self.step_id,
            passed=passed,
            confidence=to_percent(detection.confidence) if passed else 0,
            details=details,
            extras={
                "frames_checked": detection.frames_checked,
                "human_frames": detection.detection_count,
                "max_confidence": detection.max_confidence,
                "stopped_early": detection.stopped_early,
            },
        )
