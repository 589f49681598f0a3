"""Pipeline core abstractions: VerificationContext, progress events and the
VerificationStep protocol."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from vhp.schemas.detection import DetectionResult, VideoDetectionResult
from vhp.schemas.judge import JudgeVerdict
from vhp.schemas.verification import PipelineRun, StepResult, StepStatus
from vhp.services.media import MediaBlob
from vhp.utils.types import ProgressCallback

logger = logging.getLogger(__name__)


@dataclass
class VerificationContext:
    """Shared data bus passed through all steps of one run."""

    # Input (read-only for steps)
    video: MediaBlob
    photo: MediaBlob
    challenge_description: str
    run: PipelineRun

    # Step outputs
    video_detection: VideoDetectionResult | None = None
    selfie_detection: DetectionResult | None = None
    selfie_face_ratio: float | None = None
    judge_verdict: JudgeVerdict | None = None


@dataclass(frozen=True)
class ProgressEvent:
    step_id: str
    percent: int
    message: str
    status: StepStatus


ProgressListener = Callable[[ProgressEvent], None]


@runtime_checkable
class VerificationStep(Protocol):
    """Protocol that all verification steps must implement.

    ``execute`` resolves every expected failure to a failed ``StepResult``;
    anything it lets escape is turned into ``failure_message`` by the
    orchestrator.
    """

    step_id: str
    name: str
    failure_message: str

    async def execute(
        self,
        ctx: VerificationContext,
        on_progress: ProgressCallback | None = None,
    ) -> StepResult: ...


def report(on_progress: ProgressCallback | None, percent: int, message: str) -> None:
    if on_progress:
        on_progress(percent, message)
