"""State machine supervising runs and their ordered step runs.

Every transition reads the current state, checks its precondition and writes
the new state while holding the orchestrator lock.  A second caller racing for
the same transition therefore observes the changed state and fails its guard
with :class:`~smartrecon.errors.InvalidStateTransitionError`.

Step failures follow a stop-on-failure policy: the failed step's run becomes
``FAILED`` and every step still pending is ``SKIPPED``.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Iterable

import structlog

from smartrecon.errors import (
    AccessDeniedError,
    InvalidRuleSetError,
    InvalidStateTransitionError,
)
from smartrecon.lifecycle.models import (
    RUN_CANCELABLE_STATUSES,
    STEP_RUN_CANCELABLE_STATUSES,
    Run,
    RunStatus,
    StepRun,
    StepRunStatus,
)
from smartrecon.lifecycle.store import InMemoryRunStore, RunStore

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_terminal_status(step_runs: Iterable[StepRun]) -> RunStatus:
    """Return the terminal run status implied by finished step runs."""

    statuses = [step_run.status for step_run in step_runs]
    failed = statuses.count(StepRunStatus.FAILED)
    completed = statuses.count(StepRunStatus.COMPLETED)
    if failed and completed:
        return RunStatus.PARTIAL_FAILED
    if failed:
        return RunStatus.FAILED
    return RunStatus.COMPLETED


class RunOrchestrator:
    """Create, start, advance and cancel runs."""

    def __init__(self, store: RunStore | None = None) -> None:
        self.store: RunStore = store or InMemoryRunStore()
        self._lock = threading.RLock()

    def create_run(
        self, stream_id: str, organization_id: str, *, trigger_type: str = "MANUAL"
    ) -> Run:
        stream = self.store.get_stream(stream_id)
        if stream.organization_id != organization_id:
            log.warning(
                "lifecycle.run.access_denied",
                stream_id=stream_id,
                organization_id=organization_id,
            )
            raise AccessDeniedError(
                "Stream does not belong to organization",
                context={"stream_id": stream_id, "organization_id": organization_id},
            )
        run = Run(
            stream_id=stream_id,
            organization_id=organization_id,
            trigger_type=trigger_type,
        )
        self.store.save_run(run)
        log.info("lifecycle.run.created", run_id=run.run_id, stream_id=stream_id)
        return run

    def start_run(self, run_id: str) -> Run:
        with self._lock:
            run = self.store.get_run(run_id)
            if run.status is not RunStatus.PENDING:
                self._reject("Run", run.status, RunStatus.RUNNING)

            steps = self.store.list_steps(run.stream_id)
            if not steps:
                raise InvalidRuleSetError(
                    "Stream has no steps defined", context={"stream_id": run.stream_id}
                )

            now = _utcnow()
            run.transition(RunStatus.RUNNING, now=now)
            run.started_at = now
            self.store.save_run(run)
            for step in steps:
                self.store.save_step_run(
                    StepRun(run_id=run.run_id, step_id=step.step_id, step_order=step.step_order)
                )
            log.info("lifecycle.run.started", run_id=run_id, steps=len(steps))
            return self._advance(run)

    def cancel_run(self, run_id: str) -> Run:
        with self._lock:
            run = self.store.get_run(run_id)
            if run.status not in RUN_CANCELABLE_STATUSES:
                self._reject("Run", run.status, RunStatus.CANCELED)

            now = _utcnow()
            for step_run in self.store.list_step_runs(run_id):
                if step_run.status in STEP_RUN_CANCELABLE_STATUSES:
                    step_run.transition(StepRunStatus.CANCELED, now=now)
                    step_run.completed_at = now
                    self.store.save_step_run(step_run)

            run.transition(RunStatus.CANCELED, now=now)
            run.completed_at = now
            self.store.save_run(run)
            log.info("lifecycle.run.canceled", run_id=run_id)
            return run

    def dispatch_step_run(self, step_run_id: str) -> StepRun:
        with self._lock:
            step_run = self.store.get_step_run(step_run_id)
            return self._dispatch(step_run)

    def complete_step_run(self, step_run_id: str) -> StepRun:
        """Complete an in-progress step run and advance its run."""

        with self._lock:
            step_run = self.store.get_step_run(step_run_id)
            if step_run.status is not StepRunStatus.IN_PROGRESS:
                self._reject("StepRun", step_run.status, StepRunStatus.COMPLETED)

            now = _utcnow()
            step_run.transition(StepRunStatus.COMPLETED, now=now)
            step_run.progress = 100
            step_run.completed_at = now
            self.store.save_step_run(step_run)
            log.info(
                "lifecycle.step_run.completed",
                step_run_id=step_run_id,
                run_id=step_run.run_id,
                step_order=step_run.step_order,
            )
            self._advance(self.store.get_run(step_run.run_id))
            return step_run

    def fail_step_run(self, step_run_id: str, error_message: str) -> StepRun:
        """Fail an in-progress step run, skip the remaining steps and fail the run."""

        with self._lock:
            step_run = self.store.get_step_run(step_run_id)
            if step_run.status is not StepRunStatus.IN_PROGRESS:
                self._reject("StepRun", step_run.status, StepRunStatus.FAILED)

            now = _utcnow()
            step_run.transition(StepRunStatus.FAILED, now=now)
            step_run.error_message = error_message
            step_run.completed_at = now
            self.store.save_step_run(step_run)

            skipped = 0
            for other in self.store.list_step_runs(step_run.run_id):
                if other.status is StepRunStatus.PENDING:
                    other.transition(StepRunStatus.SKIPPED, now=now)
                    other.completed_at = now
                    self.store.save_step_run(other)
                    skipped += 1

            run = self.store.get_run(step_run.run_id)
            run.transition(RunStatus.FAILED, now=now)
            run.error_message = error_message
            run.completed_at = now
            self.store.save_run(run)
            log.warning(
                "lifecycle.step_run.failed",
                step_run_id=step_run_id,
                run_id=run.run_id,
                skipped=skipped,
                error=error_message,
            )
            return step_run

    def mark_step_run_retry_wait(self, step_run_id: str, error_message: str) -> StepRun:
        """Park an in-progress step run after a retryable failure, keeping its cause."""

        with self._lock:
            step_run = self.store.get_step_run(step_run_id)
            if step_run.status is not StepRunStatus.IN_PROGRESS:
                self._reject("StepRun", step_run.status, StepRunStatus.RETRY_WAIT)
            step_run.transition(StepRunStatus.RETRY_WAIT)
            step_run.error_message = error_message
            self.store.save_step_run(step_run)
            log.info(
                "lifecycle.step_run.retry_wait",
                step_run_id=step_run_id,
                attempt_no=step_run.attempt_no,
                error=error_message,
            )
            return step_run

    def retry_step_run(self, step_run_id: str) -> StepRun:
        """Re-dispatch a waiting step run immediately with the next attempt number."""

        # TODO: honour a backoff delay between attempts once retry policies exist.
        with self._lock:
            step_run = self.store.get_step_run(step_run_id)
            if step_run.status is not StepRunStatus.RETRY_WAIT:
                self._reject("StepRun", step_run.status, StepRunStatus.IN_PROGRESS)
            step_run.transition(StepRunStatus.IN_PROGRESS)
            step_run.attempt_no += 1
            step_run.progress = 0
            self.store.save_step_run(step_run)
            log.info(
                "lifecycle.step_run.retried",
                step_run_id=step_run_id,
                attempt_no=step_run.attempt_no,
            )
            return step_run

    def record_progress(
        self, step_run_id: str, progress: int, *, job_id: str | None = None
    ) -> StepRun:
        """Store progress for an in-progress step run."""

        with self._lock:
            step_run = self.store.get_step_run(step_run_id)
            if step_run.status is not StepRunStatus.IN_PROGRESS:
                self._reject("StepRun", step_run.status, StepRunStatus.IN_PROGRESS)
            step_run.progress = max(0, min(100, progress))
            if job_id is not None:
                step_run.job_id = job_id
            step_run.updated_at = _utcnow()
            self.store.save_step_run(step_run)
            return step_run

    def _dispatch(self, step_run: StepRun) -> StepRun:
        if step_run.status is not StepRunStatus.PENDING:
            self._reject("StepRun", step_run.status, StepRunStatus.IN_PROGRESS)
        now = _utcnow()
        step_run.transition(StepRunStatus.IN_PROGRESS, now=now)
        step_run.started_at = now
        self.store.save_step_run(step_run)
        log.info(
            "lifecycle.step_run.dispatched",
            step_run_id=step_run.step_run_id,
            run_id=step_run.run_id,
            step_order=step_run.step_order,
        )
        return step_run

    def _advance(self, run: Run) -> Run:
        step_runs = self.store.list_step_runs(run.run_id)
        pending = [item for item in step_runs if item.status is StepRunStatus.PENDING]
        if pending:
            next_step = min(pending, key=lambda item: item.step_order)
            self._dispatch(next_step)
            run.current_step_order = next_step.step_order
            run.updated_at = _utcnow()
            self.store.save_run(run)
            return run

        status = resolve_terminal_status(step_runs)
        now = _utcnow()
        run.transition(status, now=now)
        run.completed_at = now
        self.store.save_run(run)
        log.info("lifecycle.run.finished", run_id=run.run_id, status=status.value)
        return run

    @staticmethod
    def _reject(entity: str, from_state, to_state) -> None:
        log.warning(
            "lifecycle.transition.rejected",
            entity=entity,
            from_state=from_state.value,
            to_state=to_state.value,
        )
        raise InvalidStateTransitionError(entity, from_state, to_state)


__all__ = ["RunOrchestrator", "resolve_terminal_status"]
