from enum import StrEnum

from pydantic import BaseModel

from vhp.schemas.verification import PipelineRun, StepState


class TaskStatus(StrEnum):
    PENDING = "pending"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskSubmitResponse(BaseModel):
    task_id: str
    status: TaskStatus


class TaskProgress(BaseModel):
    current_step: str | None = None
    steps_done: int = 0
    total_steps: int = 0
    percent: float = 0.0


class TaskStatusResponse(BaseModel):
    task_id: str
    status: TaskStatus
    progress: TaskProgress
    steps: list[StepState] = []
    result: PipelineRun | None = None
    token: str | None = None
    error: str | None = None
