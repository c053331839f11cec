from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from smartrecon.errors import (
    AccessDeniedError,
    InvalidRuleSetError,
    InvalidStateTransitionError,
    NotFoundError,
)
from smartrecon.lifecycle.models import RunStatus, Step, StepRun, StepRunStatus, Stream
from smartrecon.lifecycle.orchestrator import RunOrchestrator, resolve_terminal_status
from smartrecon.reconcile.rules import RuleSet


def _orchestrator(step_count: int = 3) -> tuple[RunOrchestrator, Stream]:
    orchestrator = RunOrchestrator()
    stream = Stream(organization_id="org-1", name="month-end")
    orchestrator.store.add_stream(stream)
    # Registered in reverse; step runs follow step_order.
    for order in reversed(range(1, step_count + 1)):
        orchestrator.store.add_step(
            Step(
                stream_id=stream.stream_id,
                step_order=order,
                name=f"step-{order}",
                source=Path("a.csv"),
                target=Path("b.csv"),
                rule_set=RuleSet(),
            )
        )
    return orchestrator, stream


def _statuses(orchestrator: RunOrchestrator, run_id: str) -> list[StepRunStatus]:
    return [item.status for item in orchestrator.store.list_step_runs(run_id)]


def _in_progress(orchestrator: RunOrchestrator, run_id: str) -> StepRun:
    return next(
        item
        for item in orchestrator.store.list_step_runs(run_id)
        if item.status is StepRunStatus.IN_PROGRESS
    )


def test_create_run_checks_organization() -> None:
    orchestrator, stream = _orchestrator()

    run = orchestrator.create_run(stream.stream_id, "org-1")

    assert run.status is RunStatus.PENDING
    assert run.current_step_order == 0
    with pytest.raises(AccessDeniedError):
        orchestrator.create_run(stream.stream_id, "org-2")
    with pytest.raises(NotFoundError):
        orchestrator.create_run("unknown", "org-1")


def test_start_run_dispatches_lowest_step() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")

    started = orchestrator.start_run(run.run_id)

    assert started.status is RunStatus.RUNNING
    assert started.started_at is not None
    assert started.current_step_order == 1
    assert _statuses(orchestrator, run.run_id) == [
        StepRunStatus.IN_PROGRESS,
        StepRunStatus.PENDING,
        StepRunStatus.PENDING,
    ]
    step_runs = orchestrator.store.list_step_runs(run.run_id)
    assert all(item.attempt_no == 1 for item in step_runs)
    assert step_runs[0].started_at is not None


def test_start_run_twice_is_rejected() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)

    with pytest.raises(InvalidStateTransitionError) as excinfo:
        orchestrator.start_run(run.run_id)

    assert excinfo.value.entity == "Run"
    assert excinfo.value.from_state is RunStatus.RUNNING
    assert excinfo.value.to_state is RunStatus.RUNNING
    assert str(excinfo.value) == "Invalid state transition for Run: RUNNING -> RUNNING"


def test_concurrent_starts_allow_exactly_one_transition() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")
    workers = 8
    barrier = threading.Barrier(workers)

    def _start() -> str:
        barrier.wait()
        try:
            orchestrator.start_run(run.run_id)
        except InvalidStateTransitionError:
            return "rejected"
        return "started"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda _: _start(), range(workers)))

    assert outcomes.count("started") == 1
    assert outcomes.count("rejected") == workers - 1
    assert _statuses(orchestrator, run.run_id) == [
        StepRunStatus.IN_PROGRESS,
        StepRunStatus.PENDING,
        StepRunStatus.PENDING,
    ]


def test_concurrent_completions_advance_once() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    current = _in_progress(orchestrator, run.run_id)
    workers = 8
    barrier = threading.Barrier(workers)

    def _complete() -> bool:
        barrier.wait()
        try:
            orchestrator.complete_step_run(current.step_run_id)
        except InvalidStateTransitionError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda _: _complete(), range(workers)))

    assert outcomes.count(True) == 1
    assert _statuses(orchestrator, run.run_id) == [
        StepRunStatus.COMPLETED,
        StepRunStatus.IN_PROGRESS,
        StepRunStatus.PENDING,
    ]


def test_start_run_requires_steps() -> None:
    orchestrator, stream = _orchestrator(step_count=0)
    run = orchestrator.create_run(stream.stream_id, "org-1")

    with pytest.raises(InvalidRuleSetError):
        orchestrator.start_run(run.run_id)

    assert orchestrator.store.get_run(run.run_id).status is RunStatus.PENDING


def test_completing_every_step_completes_the_run() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)

    for expected_order in (1, 2, 3):
        current = _in_progress(orchestrator, run.run_id)
        assert current.step_order == expected_order
        completed = orchestrator.complete_step_run(current.step_run_id)
        assert completed.progress == 100

    finished = orchestrator.store.get_run(run.run_id)
    assert finished.status is RunStatus.COMPLETED
    assert finished.current_step_order == 3
    assert finished.completed_at is not None
    assert [status for status, _ in finished.status_history] == [
        RunStatus.PENDING,
        RunStatus.RUNNING,
        RunStatus.COMPLETED,
    ]


def test_fail_step_skips_remaining_and_fails_run() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    orchestrator.complete_step_run(_in_progress(orchestrator, run.run_id).step_run_id)

    failed = orchestrator.fail_step_run(
        _in_progress(orchestrator, run.run_id).step_run_id, "source file missing"
    )

    assert failed.error_message == "source file missing"
    assert _statuses(orchestrator, run.run_id) == [
        StepRunStatus.COMPLETED,
        StepRunStatus.FAILED,
        StepRunStatus.SKIPPED,
    ]
    final = orchestrator.store.get_run(run.run_id)
    assert final.status is RunStatus.FAILED
    assert final.error_message == "source file missing"


def test_terminal_status_resolution() -> None:
    def _step_runs(*statuses: StepRunStatus) -> list[StepRun]:
        return [
            StepRun(run_id="r", step_id=f"s{index}", step_order=index, status=status)
            for index, status in enumerate(statuses)
        ]

    assert (
        resolve_terminal_status(_step_runs(StepRunStatus.COMPLETED, StepRunStatus.FAILED))
        is RunStatus.PARTIAL_FAILED
    )
    assert resolve_terminal_status(_step_runs(StepRunStatus.FAILED)) is RunStatus.FAILED
    assert (
        resolve_terminal_status(_step_runs(StepRunStatus.COMPLETED, StepRunStatus.SKIPPED))
        is RunStatus.COMPLETED
    )


def test_cancel_pending_run() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")

    canceled = orchestrator.cancel_run(run.run_id)

    assert canceled.status is RunStatus.CANCELED
    assert canceled.completed_at is not None
    assert orchestrator.store.list_step_runs(run.run_id) == []


def test_cancel_running_run_leaves_completed_steps() -> None:
    orchestrator, stream = _orchestrator()
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    orchestrator.complete_step_run(_in_progress(orchestrator, run.run_id).step_run_id)

    orchestrator.cancel_run(run.run_id)

    assert _statuses(orchestrator, run.run_id) == [
        StepRunStatus.COMPLETED,
        StepRunStatus.CANCELED,
        StepRunStatus.CANCELED,
    ]
    with pytest.raises(InvalidStateTransitionError):
        orchestrator.cancel_run(run.run_id)


def test_cancel_cascades_to_retry_wait() -> None:
    orchestrator, stream = _orchestrator(step_count=1)
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    current = _in_progress(orchestrator, run.run_id)
    orchestrator.mark_step_run_retry_wait(current.step_run_id, "lock timeout")

    orchestrator.cancel_run(run.run_id)

    assert _statuses(orchestrator, run.run_id) == [StepRunStatus.CANCELED]


def test_completed_run_cannot_be_canceled() -> None:
    orchestrator, stream = _orchestrator(step_count=1)
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    orchestrator.complete_step_run(_in_progress(orchestrator, run.run_id).step_run_id)

    with pytest.raises(InvalidStateTransitionError, match="COMPLETED -> CANCELED"):
        orchestrator.cancel_run(run.run_id)


def test_retry_increments_attempt() -> None:
    orchestrator, stream = _orchestrator(step_count=1)
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    current = _in_progress(orchestrator, run.run_id)

    waiting = orchestrator.mark_step_run_retry_wait(current.step_run_id, "lock timeout")
    assert waiting.status is StepRunStatus.RETRY_WAIT
    assert waiting.error_message == "lock timeout"

    retried = orchestrator.retry_step_run(current.step_run_id)
    assert retried.status is StepRunStatus.IN_PROGRESS
    assert retried.attempt_no == 2
    assert retried.error_message == "lock timeout"

    with pytest.raises(InvalidStateTransitionError):
        orchestrator.retry_step_run(current.step_run_id)


def test_step_transition_guards() -> None:
    orchestrator, stream = _orchestrator(step_count=2)
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    pending = orchestrator.store.list_step_runs(run.run_id)[1]

    with pytest.raises(InvalidStateTransitionError) as excinfo:
        orchestrator.complete_step_run(pending.step_run_id)
    assert excinfo.value.entity == "StepRun"
    with pytest.raises(InvalidStateTransitionError):
        orchestrator.fail_step_run(pending.step_run_id, "nope")
    with pytest.raises(InvalidStateTransitionError):
        orchestrator.mark_step_run_retry_wait(pending.step_run_id, "nope")

    current = _in_progress(orchestrator, run.run_id)
    with pytest.raises(InvalidStateTransitionError, match="IN_PROGRESS -> IN_PROGRESS"):
        orchestrator.dispatch_step_run(current.step_run_id)


def test_record_progress_links_job() -> None:
    orchestrator, stream = _orchestrator(step_count=1)
    run = orchestrator.create_run(stream.stream_id, "org-1")
    orchestrator.start_run(run.run_id)
    current = _in_progress(orchestrator, run.run_id)

    updated = orchestrator.record_progress(current.step_run_id, 40, job_id="job-9")

    assert (updated.progress, updated.job_id) == (40, "job-9")
