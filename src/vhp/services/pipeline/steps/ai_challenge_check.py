"""Step 4: a vision judge decides whether the challenge was performed."""

from __future__ import annotations

import logging

from vhp.exceptions import FrameCaptureError, MediaValidationError
from vhp.schemas.verification import StepResult
from vhp.services.frame_sampler import FrameSampler, estimate_token_usage, frame_preview
from vhp.services.judge import RemoteJudgmentAdapter
from vhp.services.media import KB, MB, VideoOpener, validate_video_blob
from vhp.services.pipeline.base import VerificationContext, report
from vhp.utils.types import ProgressCallback

logger = logging.getLogger(__name__)


class AIChallengeCheckStep:
    step_id = "ai-challenge-check"
    name = "AI Challenge Verification"
    failure_message = "AI verification failed"

    def __init__(
        self,
        sampler: FrameSampler,
        adapter: RemoteJudgmentAdapter,
        opener: VideoOpener,
        *,
        frames_per_second: float = 3.0,
        max_frames: int = 16,
        min_bytes: int = KB,
        max_bytes: int = 100 * MB,
    ) -> None:
        self._sampler = sampler
        self._adapter = adapter
        self._open = opener
        self._frames_per_second = frames_per_second
        self._max_frames = max_frames
        self._min_bytes = min_bytes
        self._max_bytes = max_bytes

    async def execute(
        self,
        ctx: VerificationContext,
        on_progress: ProgressCallback | None = None,
    ) -> StepResult:
        logger.info("Challenge: %s", ctx.challenge_description[:100])
        try:
            report(on_progress, 5, "Validating video for AI analysis...")
            ok, message = validate_video_blob(
                ctx.video, min_bytes=self._min_bytes, max_bytes=self._max_bytes
            )
            if not ok:
                raise MediaValidationError(message)

            report(on_progress, 10, "Configuring frame extraction...")
            logger.info(
                "Frame extraction: %.1f fps, max %d frames",
                self._frames_per_second,
                self._max_frames,
            )

            report(on_progress, 15, "Extracting frames from video...")
            source = await self._open(ctx.video)
            try:
                samples = await self._sampler.sample_video(
                    source, self._frames_per_second, self._max_frames
                )
            finally:
                source.close()
            if not samples:
                raise FrameCaptureError("No frames could be extracted from video")

            report(on_progress, 55, f"Extracted {len(samples)} frames successfully")
            logger.info(
                "%s (~%d tokens)", frame_preview(samples), estimate_token_usage(samples)
            )

            report(on_progress, 65, "Sending frames to AI for analysis...")
            verdict = await self._adapter.judge(
                [s.to_base64() for s in samples], ctx.challenge_description
            )
            report(on_progress, 90, "Processing AI evaluation results...")
        except Exception as e:
            logger.error("AI challenge check error: %s", e, exc_info=True)
            report(on_progress, 100, "AI verification failed due to error")
            return StepResult(
                step_id=self.step_id,
                passed=False,
                confidence=0,
                details=f"AI verification error: {e}",
            )

        ctx.judge_verdict = verdict
        logger.info(
            "AI verdict: score %d/100, passed=%s, confidence %d%%",
            verdict.score,
            verdict.passed,
            verdict.confidence,
        )
        report(on_progress, 100, verdict.details)
        return StepResult(
            step_id=self.step_id,
            passed=verdict.passed,
            confidence=verdict.confidence,
            details=verdict.details,
            extras={
                "challenge_completed": verdict.challenge_completed,
                "score": verdict.score,
                "ai_confidence": verdict.ai_confidence,
                "explanation": verdict.explanation,
                "frames_analyzed": verdict.frames_analyzed or len(samples),
                "subscores": verdict.subscores,
                "simulated": verdict.simulated,
            },
        )
