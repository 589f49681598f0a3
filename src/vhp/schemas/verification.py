"""Verification pipeline schemas: step states, step results and the run."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

# StepResult.confidence is on a 0-100 scale; internal ratios are 0.0-1.0
CONFIDENCE_SCALE = 100


def to_percent(ratio: float) -> int:
    """Convert an internal 0.0-1.0 confidence to the external 0-100 scale."""
    return int(round(min(max(ratio, 0.0), 1.0) * CONFIDENCE_SCALE))


def to_ratio(percent: float) -> float:
    return percent / CONFIDENCE_SCALE


class StepStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepResult(BaseModel):
    """Outcome of one executed step. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    passed: bool
    confidence: int = Field(ge=0, le=CONFIDENCE_SCALE)
    details: str
    extras: dict[str, Any] = Field(default_factory=dict)

    @property
    def ratio(self) -> float:
        return to_ratio(self.confidence)


class StepState(BaseModel):
    """Live view of a step as the UI sees it while the run progresses."""

    step_id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    progress: int = 0
    message: str = "Waiting to start..."
    confidence: int | None = None


class PipelineRun(BaseModel):
    """One verification attempt over a video and a selfie."""

    run_id: str
    steps: list[StepState]
    results: list[StepResult] = Field(default_factory=list)
    passed: bool = False
    confidence: float = 0.0
    finalized: bool = False

    _video: Any = PrivateAttr(default=None)
    _photo: Any = PrivateAttr(default=None)

    def attach_media(self, video: Any, photo: Any) -> None:
        self._video = video
        self._photo = photo

    @property
    def video(self) -> Any:
        return self._video

    @property
    def photo(self) -> Any:
        return self._photo

    def state(self, step_id: str) -> StepState:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        raise KeyError(step_id)

    def result(self, step_id: str) -> StepResult | None:
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None

    def append(self, result: StepResult) -> None:
        if self.finalized:
            raise RuntimeError(f"Run {self.run_id} is finalized")
        self.results.append(result)

    def finalize(self) -> None:
        """Freeze the run: AND of step passes, mean confidence of passed steps."""
        if self.finalized:
            return
        self.passed = (
            len(self.results) == len(self.steps)
            and all(r.passed for r in self.results)
        )
        passed = [r.confidence for r in self.results if r.passed]
        self.confidence = round(sum(passed) / len(passed), 2) if passed else 0.0
        self.finalized = True


class VerifyResponse(BaseModel):
    run: PipelineRun
    token: str | None = None
    processing_time_ms: float


class HealthResponse(BaseModel):
    status: str = "ok"
    models_loaded: list[str] = Field(default_factory=list)
    llm_reachable: bool = False
    judge_mode: str = "local"
