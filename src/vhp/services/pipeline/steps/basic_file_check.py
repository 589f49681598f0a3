"""Step 1: MIME type and size checks on both uploads. No ML involved."""

from __future__ import annotations

import logging

from vhp.schemas.verification import CONFIDENCE_SCALE, StepResult
from vhp.services.media import KB, MB, validate_photo_blob, validate_video_blob
from vhp.services.pipeline.base import VerificationContext, report
from vhp.utils.types import ProgressCallback

logger = logging.getLogger(__name__)


class BasicFileCheckStep:
    step_id = "basic-check"
    name = "Basic File Check"
    failure_message = "File validation failed"

    def __init__(
        self,
        *,
        video_min_bytes: int = KB,
        video_max_bytes: int = 100 * MB,
        photo_min_bytes: int = KB,
        photo_max_bytes: int = 10 * MB,
    ) -> None:
        self._video_bounds = {"min_bytes": video_min_bytes, "max_bytes": video_max_bytes}
        self._photo_bounds = {"min_bytes": photo_min_bytes, "max_bytes": photo_max_bytes}

    async def execute(
        self,
        ctx: VerificationContext,
        on_progress: ProgressCallback | None = None,
    ) -> StepResult:
        logger.info("Video: %s | Photo: %s", ctx.video.describe(), ctx.photo.describe())

        report(on_progress, 10, "Checking video file format...")
        video_ok, video_msg = validate_video_blob(ctx.video, **self._video_bounds)
        if not video_ok:
            logger.warning("Video rejected: %s", video_msg)

        report(on_progress, 50, "Checking photo file format...")
        photo_ok, photo_msg = validate_photo_blob(ctx.photo, **self._photo_bounds)
        if not photo_ok:
            logger.warning("Photo rejected: %s", photo_msg)

        report(on_progress, 90, "Finalizing file validation...")
        passed = video_ok and photo_ok
        if passed:
            details = "All files validated successfully"
        else:
            details = " | ".join(
                msg for ok, msg in ((video_ok, video_msg), (photo_ok, photo_msg)) if not ok
            )

        report(on_progress, 100, "Files validated successfully" if passed else details)
        return StepResult(
            step_id=self.step_id,
            passed=passed,
            confidence=CONFIDENCE_SCALE if passed else 0,
            details=details,
            extras={"video_valid": video_ok, "photo_valid": photo_ok},
        )
