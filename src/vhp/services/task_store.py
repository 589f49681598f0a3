"""In-memory store for verifications submitted through the async API.

A submitted verification gets a task id right away; the pipeline runs in
a background asyncio task and clients poll the per-step states of its
``PipelineRun`` until the task turns ``completed`` or ``failed``.
"""

import asyncio
import logging
import uuid

from vhp.config import Settings
from vhp.schemas.task import TaskProgress, TaskStatus
from vhp.schemas.verification import PipelineRun, StepStatus
from vhp.services.media import MediaBlob
from vhp.services.pipeline import VerificationService
from vhp.utils.token import issue_vhp_token

logger = logging.getLogger(__name__)

_TERMINAL = (TaskStatus.COMPLETED, TaskStatus.FAILED)
_STEP_DONE = (StepStatus.COMPLETED, StepStatus.FAILED)


class TaskInfo:
    __slots__ = (
        "task_id",
        "status",
        "run",
        "token",
        "error",
    )

    def __init__(self, task_id: str, run: PipelineRun) -> None:
        self.task_id = task_id
        self.status = TaskStatus.PENDING
        self.run = run
        self.token: str | None = None
        self.error: str | None = None

    @property
    def finished(self) -> bool:
        return self.status in _TERMINAL

    @property
    def progress(self) -> TaskProgress:
        steps = self.run.steps
        running = [s.name for s in steps if s.status == StepStatus.RUNNING]
        if self.finished:
            percent = 100.0
        elif steps:
            percent = sum(s.progress for s in steps) / len(steps)
        else:
            percent = 0.0
        return TaskProgress(
            current_step=running[0] if running else None,
            steps_done=sum(1 for s in steps if s.status in _STEP_DONE),
            total_steps=len(steps),
            percent=round(percent, 1),
        )


class TaskStore:
    """Background verification tasks, polled by task id."""

    def __init__(self, verification: VerificationService, settings: Settings) -> None:
        self._verification = verification
        self._task_timeout = settings.task_timeout_seconds
        self._capacity = settings.task_max_in_memory
        self._tasks: dict[str, TaskInfo] = {}
        # strong references so running jobs are not garbage collected
        self._jobs: set[asyncio.Task] = set()

    def submit_verification(
        self, video: MediaBlob, photo: MediaBlob, challenge_description: str
    ) -> str:
        task = TaskInfo(uuid.uuid4().hex, self._verification.new_run(video, photo))
        self._tasks[task.task_id] = task
        self._trim()

        job = asyncio.create_task(self._drive(task, video, photo, challenge_description))
        self._jobs.add(job)
        job.add_done_callback(self._jobs.discard)
        logger.info("Verification task %s queued", task.task_id)
        return task.task_id

    def get(self, task_id: str) -> TaskInfo | None:
        return self._tasks.get(task_id)

    def __len__(self) -> int:
        return len(self._tasks)

    def _trim(self) -> None:
        """Drop the oldest finished tasks once the store is over capacity."""
        excess = len(self._tasks) - self._capacity
        if excess <= 0:
            return
        # dicts keep insertion order, so the first finished ids are the oldest
        stale = [tid for tid, t in self._tasks.items() if t.finished][:excess]
        for tid in stale:
            del self._tasks[tid]
        if stale:
            logger.info("Dropped %d finished tasks (%d kept)", len(stale), len(self._tasks))

    async def _drive(
        self,
        task: TaskInfo,
        video: MediaBlob,
        photo: MediaBlob,
        challenge_description: str,
    ) -> None:
        task.status = TaskStatus.VERIFYING
        try:
            run = await asyncio.wait_for(
                self._verification.run_full_verification(
                    video, photo, challenge_description, run=task.run
                ),
                timeout=self._task_timeout,
            )
        except asyncio.TimeoutError:
            task.status = TaskStatus.FAILED
            task.error = f"Task timed out ({self._task_timeout}s)"
            logger.error("Task %s timed out after %ds", task.task_id, self._task_timeout)
            return
        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e) or type(e).__name__
            logger.error(
                "Task %s crashed: [%s] %s", task.task_id, type(e).__name__, e, exc_info=True
            )
            return

        task.run = run
        task.token = issue_vhp_token() if run.passed else None
        task.status = TaskStatus.COMPLETED
        logger.info("Task %s completed (passed=%s)", task.task_id, run.passed)
