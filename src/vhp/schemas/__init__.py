"""VHP schemas."""

from vhp.schemas.detection import BoundingBox, DetectionResult, VideoDetectionResult
from vhp.schemas.verification import (
    PipelineRun,
    StepResult,
    StepState,
    StepStatus,
)

__all__ = [
    "BoundingBox",
    "DetectionResult",
    "PipelineRun",
    "StepResult",
    "StepState",
    "StepStatus",
    "VideoDetectionResult",
]
