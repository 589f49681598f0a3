"""Verification orchestrator: runs steps in order, stops at the first failure."""

import asyncio
import logging
import time
import uuid
from collections.abc import Iterable

from vhp.schemas.verification import PipelineRun, StepResult, StepState, StepStatus
from vhp.services.pipeline.base import (
    ProgressEvent,
    ProgressListener,
    VerificationContext,
    VerificationStep,
)
from vhp.utils.types import ProgressCallback

logger = logging.getLogger(__name__)


class VerificationOrchestrator:
    """Runs a fixed sequence of VerificationStep instances.

    A failed step halts the run; the steps after it stay ``pending``. The
    optional ``timeout_s`` bounds the whole run: on expiry the running step
    is failed with a timeout message.
    """

    def __init__(self, *, timeout_s: float | None = None) -> None:
        self._steps: list[VerificationStep] = []
        self._timeout_s = timeout_s

    def register(self, step: VerificationStep) -> "VerificationOrchestrator":
        self._steps.append(step)
        return self

    @property
    def steps(self) -> list[VerificationStep]:
        return list(self._steps)

    def new_run(self) -> PipelineRun:
        return PipelineRun(
            run_id=uuid.uuid4().hex,
            steps=[StepState(step_id=s.step_id, name=s.name) for s in self._steps],
        )

    async def run(
        self,
        ctx: VerificationContext,
        listeners: Iterable[ProgressListener] = (),
    ) -> PipelineRun:
        run = ctx.run
        listeners = list(listeners)
        try:
            if self._timeout_s:
                await asyncio.wait_for(self._run_steps(ctx, listeners), self._timeout_s)
            else:
                await self._run_steps(ctx, listeners)
        except asyncio.TimeoutError:
            logger.error("Run %s timed out after %.0fs", run.run_id, self._timeout_s)
            self._fail_running(
                run,
                f"Verification timed out after {self._timeout_s:.0f}s",
                listeners,
            )
        run.finalize()
        logger.info(
            "Run %s finished: passed=%s confidence=%.2f",
            run.run_id,
            run.passed,
            run.confidence,
        )
        return run

    async def _run_steps(
        self, ctx: VerificationContext, listeners: list[ProgressListener]
    ) -> None:
        run = ctx.run
        total = len(self._steps)

        for idx, step in enumerate(self._steps, 1):
            state = run.state(step.step_id)
            self._update(state, listeners, StepStatus.RUNNING, 0, "Starting...")
            logger.info("Step [%d/%d] %s starting...", idx, total, step.name)

            def _make_cb(state: StepState) -> ProgressCallback:
                def _cb(percent: int, message: str) -> None:
                    self._update(state, listeners, StepStatus.RUNNING, percent, message)
                return _cb

            start = time.perf_counter()
            try:
                result = await step.execute(ctx, on_progress=_make_cb(state))
            except Exception as e:
                logger.error(
                    "Step %s raised: [%s] %s", step.step_id, type(e).__name__, e, exc_info=True
                )
                result = StepResult(
                    step_id=step.step_id,
                    passed=False,
                    confidence=0,
                    details=step.failure_message,
                )
            elapsed = (time.perf_counter() - start) * 1000

            run.append(result)
            state.confidence = result.confidence
            self._update(
                state,
                listeners,
                StepStatus.COMPLETED if result.passed else StepStatus.FAILED,
                100,
                result.details,
            )
            logger.info(
                "Step [%d/%d] %s %s in %.0fms (confidence %d)",
                idx,
                total,
                step.name,
                "passed" if result.passed else "failed",
                elapsed,
                result.confidence,
            )
            if not result.passed:
                break

    def _fail_running(
        self, run: PipelineRun, message: str, listeners: list[ProgressListener]
    ) -> None:
        for state in run.steps:
            if state.status != StepStatus.RUNNING:
                continue
            run.append(
                StepResult(step_id=state.step_id, passed=False, confidence=0, details=message)
            )
            state.confidence = 0
            self._update(state, listeners, StepStatus.FAILED, 100, message)

    @staticmethod
    def _update(
        state: StepState,
        listeners: list[ProgressListener],
        status: StepStatus,
        percent: int,
        message: str,
    ) -> None:
        state.status = status
        state.progress = percent
        state.message = message
        event = ProgressEvent(
            step_id=state.step_id, percent=percent, message=message, status=status
        )
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.warning("Progress listener failed", exc_info=True)
