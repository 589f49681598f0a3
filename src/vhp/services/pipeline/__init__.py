"""Verification service facade.

Wires the four verification steps into a VerificationOrchestrator and
exposes ``run_full_verification``, which always resolves to a
``PipelineRun`` and never raises.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Iterable
from typing import TYPE_CHECKING

from vhp.schemas.verification import PipelineRun
from vhp.services.frame_sampler import FrameSampler
from vhp.services.media import MediaBlob, VideoOpener, open_video_source
from vhp.services.pipeline.base import (
    ProgressEvent,
    ProgressListener,
    VerificationContext,
    VerificationStep,
)
from vhp.services.pipeline.orchestrator import VerificationOrchestrator
from vhp.services.pipeline.steps import (
    AIChallengeCheckStep,
    BasicFileCheckStep,
    HumanSelfieCheckStep,
    HumanVideoCheckStep,
)
from vhp.services.video_scanner import VideoHumanScanner
from vhp.utils.types import ProgressCallback

if TYPE_CHECKING:
    from vhp.config import Settings
    from vhp.services.human_detector import HumanPresenceClassifier
    from vhp.services.judge import RemoteJudgmentAdapter

logger = logging.getLogger(__name__)

__all__ = [
    "ProgressEvent",
    "ProgressListener",
    "VerificationContext",
    "VerificationOrchestrator",
    "VerificationService",
    "VerificationStep",
]


class VerificationService:
    """Facade: basic check, video check, selfie check, AI challenge check."""

    def __init__(
        self,
        classifier: HumanPresenceClassifier,
        adapter: RemoteJudgmentAdapter,
        settings: Settings,
        *,
        opener: VideoOpener | None = None,
    ) -> None:
        if opener is None:
            opener = functools.partial(
                open_video_source,
                timeout_s=settings.video_open_timeout_s,
                tmp_dir=settings.upload_tmp_dir,
            )

        scan_sampler = FrameSampler(
            seek_timeout_ms=settings.seek_timeout_ms,
            settle_delay_ms=settings.settle_delay_ms,
        )
        judge_sampler = FrameSampler(
            max_dimension=settings.judge_max_dimension,
            jpeg_quality=settings.judge_jpeg_quality,
            seek_timeout_ms=settings.seek_timeout_ms,
            settle_delay_ms=settings.settle_delay_ms,
        )
        video_bounds = {
            "min_bytes": settings.video_min_bytes,
            "max_bytes": settings.video_max_bytes,
        }

        self._orchestrator = VerificationOrchestrator(
            timeout_s=settings.verification_timeout_seconds
        )
        # 1. MIME type and size of both uploads
        self._orchestrator.register(
            BasicFileCheckStep(
                video_min_bytes=settings.video_min_bytes,
                video_max_bytes=settings.video_max_bytes,
                photo_min_bytes=settings.photo_min_bytes,
                photo_max_bytes=settings.photo_max_bytes,
            )
        )
        # 2. Person visible in the video (early stop on a detection streak)
        self._orchestrator.register(
            HumanVideoCheckStep(
                VideoHumanScanner(scan_sampler, classifier),
                opener,
                frame_interval_s=settings.video_frame_interval_s,
                min_confidence=settings.video_min_confidence,
                max_frames=settings.video_max_frames,
                consecutive_threshold=settings.video_consecutive_threshold,
                max_detections=settings.video_max_detections,
                min_resolution=settings.min_resolution,
                **video_bounds,
            )
        )
        # 3. Face in the selfie
        self._orchestrator.register(
            HumanSelfieCheckStep(
                classifier,
                min_confidence=settings.selfie_min_confidence,
                max_faces=settings.selfie_max_faces,
                min_resolution=settings.min_resolution,
                decode_timeout_s=settings.photo_decode_timeout_s,
                min_bytes=settings.photo_min_bytes,
                max_bytes=settings.photo_max_bytes,
            )
        )
        # 4. Vision judge on extracted frames
        self._orchestrator.register(
            AIChallengeCheckStep(
                judge_sampler,
                adapter,
                opener,
                frames_per_second=settings.judge_frames_per_second,
                max_frames=settings.judge_max_frames,
                **video_bounds,
            )
        )

    @property
    def orchestrator(self) -> VerificationOrchestrator:
        return self._orchestrator

    def new_run(self, video: MediaBlob, photo: MediaBlob) -> PipelineRun:
        run = self._orchestrator.new_run()
        run.attach_media(video, photo)
        return run

    async def run_full_verification(
        self,
        video: MediaBlob,
        photo: MediaBlob,
        challenge_description: str,
        on_progress: ProgressCallback | None = None,
        listeners: Iterable[ProgressListener] = (),
        run: PipelineRun | None = None,
    ) -> PipelineRun:
        """Run every step in order and return the finalized run.

        Args:
            on_progress: receives (overall percent 0-100, message).
            listeners: receive every per-step ProgressEvent.
            run: a run created by ``new_run``, for callers that watch its
                step states while it executes.
        """
        if run is None:
            run = self.new_run(video, photo)
        logger.info("Verification %s started (%s)", run.run_id, challenge_description[:60])
        start = time.perf_counter()

        all_listeners = list(listeners)
        if on_progress:
            all_listeners.append(self._overall_progress(run, on_progress))

        ctx = VerificationContext(
            video=video,
            photo=photo,
            challenge_description=challenge_description,
            run=run,
        )
        try:
            await self._orchestrator.run(ctx, all_listeners)
        except Exception as e:
            logger.error("Verification %s crashed: %s", run.run_id, e, exc_info=True)
            run.finalize()

        logger.info(
            "Verification %s done in %.0fms: passed=%s",
            run.run_id,
            (time.perf_counter() - start) * 1000,
            run.passed,
        )
        return run

    @staticmethod
    def _overall_progress(
        run: PipelineRun, on_progress: ProgressCallback
    ) -> ProgressListener:
        index = {state.step_id: i for i, state in enumerate(run.steps)}
        total = len(run.steps) or 1

        def _listener(event: ProgressEvent) -> None:
            done = index.get(event.step_id, 0)
            on_progress(round((done * 100 + event.percent) / total), event.message)

        return _listener
