"""Background execution of reconciliation jobs and multi-step runs."""

from __future__ import annotations

import concurrent.futures
import threading
import uuid
from typing import Iterable

import structlog

from smartrecon.config import ReconcileSettings
from smartrecon.errors import InvalidStateTransitionError, RetryableStepError
from smartrecon.lifecycle.models import Run, RunStatus, Step, StepRun, StepRunStatus, Stream
from smartrecon.lifecycle.orchestrator import RunOrchestrator
from smartrecon.lifecycle.store import RunStore
from smartrecon.reconcile.executor import ProgressCallback, ReconciliationExecutor
from smartrecon.reconcile.models import ExecutionResult, JobStatus, ReconciliationJob

log = structlog.get_logger(__name__)


class JobHandle:
    """Handle for a job submitted to :class:`JobRunner`."""

    def __init__(
        self,
        job_id: str,
        future: concurrent.futures.Future[ExecutionResult],
        cancel_event: threading.Event,
        executor: ReconciliationExecutor,
    ) -> None:
        self.job_id = job_id
        self._future = future
        self._cancel_event = cancel_event
        self._executor = executor

    def cancel(self) -> None:
        """Request cooperative cancellation; the job stops at its next checkpoint."""

        self._executor.cancel_job(self.job_id)
        self._cancel_event.set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> ExecutionResult:
        return self._future.result(timeout=timeout)

    def status(self) -> JobStatus:
        return self._executor.store.get_job(self.job_id).status


class JobRunner:
    """Run reconciliation jobs on a worker pool.

    ``submit`` records the job as ``PENDING`` and returns immediately.
    """

    def __init__(
        self,
        executor: ReconciliationExecutor,
        settings: ReconcileSettings | None = None,
    ) -> None:
        self.executor = executor
        self.settings = settings or executor.settings
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="smartrecon-job",
        )

    def submit(
        self, job: ReconciliationJob, *, progress: ProgressCallback | None = None
    ) -> JobHandle:
        self.executor.create_job(job)
        cancel_event = threading.Event()
        future = self._pool.submit(
            self.executor.execute, job, progress=progress, cancel_event=cancel_event
        )
        log.info("lifecycle.job.submitted", job_id=job.job_id, name=job.name)
        return JobHandle(job.job_id, future, cancel_event, self.executor)

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


class RunDriver:
    """Execute a run's ordered steps through the executor and state machine.

    Each step becomes one reconciliation job.  The run is re-read between
    steps and between executor milestones, so a concurrent
    :meth:`RunOrchestrator.cancel_run` stops the driver at its next checkpoint.
    """

    def __init__(
        self,
        orchestrator: RunOrchestrator,
        executor: ReconciliationExecutor,
        settings: ReconcileSettings | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.executor = executor
        self.settings = settings or executor.settings
        self._initial_jobs: dict[str, ReconciliationJob] = {}

    @property
    def store(self) -> RunStore:
        return self.orchestrator.store

    def register(self, stream: Stream, steps: Iterable[Step]) -> Stream:
        self.store.add_stream(stream)
        for step in steps:
            self.store.add_step(step)
        return stream

    def run(
        self, stream_id: str, organization_id: str, *, trigger_type: str = "MANUAL"
    ) -> Run:
        """Create, start and execute a run of *stream_id* to its end."""

        run = self.orchestrator.create_run(stream_id, organization_id, trigger_type=trigger_type)
        self.orchestrator.start_run(run.run_id)
        return self.execute_run(run.run_id)

    def run_single(self, job: ReconciliationJob, organization_id: str) -> Run:
        """Track a standalone reconciliation as a one-step run."""

        stream = Stream(organization_id=organization_id, name=job.name)
        step = Step(
            stream_id=stream.stream_id,
            step_order=1,
            name=job.name,
            source=job.source,
            target=job.target,
            rule_set=job.rule_set,
        )
        self.register(stream, [step])
        self._initial_jobs[step.step_id] = job
        try:
            return self.run(stream.stream_id, organization_id, trigger_type="SINGLE")
        finally:
            self._initial_jobs.pop(step.step_id, None)

    def execute_run(self, run_id: str) -> Run:
        while True:
            run = self.store.get_run(run_id)
            if run.status is not RunStatus.RUNNING:
                break
            step_run = self._current_step_run(run_id)
            if step_run is None:
                break
            step = self.store.get_step(step_run.step_id)
            if not self._execute_step(step, step_run):
                break

        run = self.store.get_run(run_id)
        log.info("lifecycle.run.driven", run_id=run_id, status=run.status.value)
        return run

    def _current_step_run(self, run_id: str) -> StepRun | None:
        for step_run in self.store.list_step_runs(run_id):
            if step_run.status is StepRunStatus.IN_PROGRESS:
                return step_run
        return None

    def _job_for(self, step: Step, step_run: StepRun) -> ReconciliationJob:
        initial = self._initial_jobs.get(step.step_id)
        if initial is not None and step_run.attempt_no == 1:
            return initial
        return ReconciliationJob(
            job_id=uuid.uuid4().hex,
            name=step.name,
            source=step.source,
            target=step.target,
            rule_set=step.rule_set,
        )

    def _execute_step(self, step: Step, step_run: StepRun) -> bool:
        """Execute one step run; return ``False`` once the run was canceled."""

        step_run_id = step_run.step_run_id
        while True:
            job = self._job_for(step, step_run)
            cancel_event = threading.Event()
            if not self._record_progress(step_run_id, 0, cancel_event, job_id=job.job_id):
                return False

            def _progress(milestone: str, percent: int) -> None:
                self._record_progress(step_run_id, percent, cancel_event)

            log.info(
                "lifecycle.step.executing",
                step_run_id=step_run_id,
                step=step.name,
                attempt_no=step_run.attempt_no,
                job_id=job.job_id,
            )
            result = self.executor.execute(job, progress=_progress, cancel_event=cancel_event)

            try:
                if result.status is JobStatus.CANCELED:
                    return False
                if result.status is JobStatus.COMPLETED:
                    self.orchestrator.complete_step_run(step_run_id)
                    return True

                error = result.error
                message = error.message if error else "Reconciliation failed"
                retryable = error is not None and error.code == RetryableStepError.default_code
                if retryable and step_run.attempt_no < self.settings.max_step_attempts:
                    self.orchestrator.mark_step_run_retry_wait(step_run_id, message)
                    step_run = self.orchestrator.retry_step_run(step_run_id)
                    continue
                self.orchestrator.fail_step_run(step_run_id, message)
                return False
            except InvalidStateTransitionError:
                if self.store.get_run(step_run.run_id).status is RunStatus.CANCELED:
                    log.info("lifecycle.step.canceled", step_run_id=step_run_id)
                    return False
                raise

    def _record_progress(
        self,
        step_run_id: str,
        percent: int,
        cancel_event: threading.Event,
        *,
        job_id: str | None = None,
    ) -> bool:
        try:
            self.orchestrator.record_progress(step_run_id, percent, job_id=job_id)
        except InvalidStateTransitionError:
            cancel_event.set()
            return False
        return True


__all__ = ["JobHandle", "JobRunner", "RunDriver"]
