from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from smartrecon.config import ReconcileSettings
from smartrecon.errors import InvalidStateTransitionError, RetryableStepError
from smartrecon.lifecycle.models import RunStatus, Step, StepRunStatus, Stream
from smartrecon.lifecycle.orchestrator import RunOrchestrator
from smartrecon.lifecycle.runner import JobRunner, RunDriver
from smartrecon.parsing import CsvParser, ParsedTable
from smartrecon.reconcile.executor import ReconciliationExecutor
from smartrecon.reconcile.models import JobStatus, ReconciliationJob
from smartrecon.reconcile.rules import RuleSet


class HookedParser(CsvParser):
    """CSV parser calling *hook* before each parse."""

    def __init__(self, hook: Callable[[Path], None]) -> None:
        super().__init__()
        self.hook = hook

    def parse(self, path: Path) -> ParsedTable:
        self.hook(path)
        return super().parse(path)


def _driver(executor: ReconciliationExecutor | None = None) -> RunDriver:
    executor = executor or ReconciliationExecutor()
    return RunDriver(RunOrchestrator(), executor)


def _stream(driver: RunDriver, steps: list[tuple[Path, Path]], rule_set: RuleSet) -> Stream:
    stream = Stream(organization_id="org-1", name="close")
    driver.register(
        stream,
        [
            Step(
                stream_id=stream.stream_id,
                step_order=order,
                name=f"step-{order}",
                source=source,
                target=target,
                rule_set=rule_set,
            )
            for order, (source, target) in enumerate(steps, start=1)
        ],
    )
    return stream


def test_run_executes_every_step(write_csv, id_rule_set: RuleSet) -> None:
    a = write_csv("a.csv", [{"id": 1}])
    b = write_csv("b.csv", [{"id": 1}, {"id": 2}])
    driver = _driver()
    stream = _stream(driver, [(a, a), (a, b)], id_rule_set)

    run = driver.run(stream.stream_id, "org-1")

    assert run.status is RunStatus.COMPLETED
    step_runs = driver.store.list_step_runs(run.run_id)
    assert [item.status for item in step_runs] == [StepRunStatus.COMPLETED] * 2
    assert all(item.progress == 100 for item in step_runs)
    job_ids = [item.job_id for item in step_runs]
    assert None not in job_ids
    second_job = driver.executor.store.get_job(job_ids[1])
    assert second_job.status is JobStatus.COMPLETED
    assert second_job.unmatched_target_records == 1


def test_failed_step_stops_the_run(write_csv, tmp_path: Path, id_rule_set: RuleSet) -> None:
    a = write_csv("a.csv", [{"id": 1}])
    missing = tmp_path / "missing.csv"
    driver = _driver()
    stream = _stream(driver, [(a, a), (missing, a), (a, a)], id_rule_set)

    run = driver.run(stream.stream_id, "org-1")

    assert run.status is RunStatus.FAILED
    assert "missing.csv" in run.error_message
    assert [item.status for item in driver.store.list_step_runs(run.run_id)] == [
        StepRunStatus.COMPLETED,
        StepRunStatus.FAILED,
        StepRunStatus.SKIPPED,
    ]


def test_retryable_errors_are_retried(write_csv, id_rule_set: RuleSet) -> None:
    a = write_csv("a.csv", [{"id": 1}])
    calls: list[Path] = []

    def _flaky(path: Path) -> None:
        calls.append(path)
        if len(calls) == 1:
            raise RetryableStepError("storage temporarily unavailable")

    settings = ReconcileSettings(max_step_attempts=2)
    executor = ReconciliationExecutor(parser=HookedParser(_flaky), settings=settings)
    driver = RunDriver(RunOrchestrator(), executor, settings)
    stream = _stream(driver, [(a, a)], id_rule_set)

    run = driver.run(stream.stream_id, "org-1")

    assert run.status is RunStatus.COMPLETED
    (step_run,) = driver.store.list_step_runs(run.run_id)
    assert step_run.attempt_no == 2
    assert step_run.error_message == "storage temporarily unavailable"
    assert [status for status, _ in step_run.status_history] == [
        StepRunStatus.PENDING,
        StepRunStatus.IN_PROGRESS,
        StepRunStatus.RETRY_WAIT,
        StepRunStatus.IN_PROGRESS,
        StepRunStatus.COMPLETED,
    ]


def test_retries_stop_at_max_attempts(write_csv, id_rule_set: RuleSet) -> None:
    a = write_csv("a.csv", [{"id": 1}])

    def _always(path: Path) -> None:
        raise RetryableStepError("still unavailable")

    executor = ReconciliationExecutor(parser=HookedParser(_always))
    driver = _driver(executor)
    stream = _stream(driver, [(a, a)], id_rule_set)

    run = driver.run(stream.stream_id, "org-1")

    assert run.status is RunStatus.FAILED
    (step_run,) = driver.store.list_step_runs(run.run_id)
    assert step_run.attempt_no == 1
    assert step_run.error_message == "still unavailable"


def test_cancel_during_step_stops_the_run(write_csv, id_rule_set: RuleSet) -> None:
    a = write_csv("a.csv", [{"id": 1}])
    driver_holder: dict[str, RunDriver] = {}
    run_ids: list[str] = []

    def _cancel_on_target(path: Path) -> None:
        if path.name == "b.csv":
            driver_holder["driver"].orchestrator.cancel_run(run_ids[0])

    b = write_csv("b.csv", [{"id": 1}])
    executor = ReconciliationExecutor(parser=HookedParser(_cancel_on_target))
    driver = _driver(executor)
    driver_holder["driver"] = driver
    stream = _stream(driver, [(a, b), (a, a)], id_rule_set)
    run = driver.orchestrator.create_run(stream.stream_id, "org-1")
    run_ids.append(run.run_id)
    driver.orchestrator.start_run(run.run_id)

    final = driver.execute_run(run.run_id)

    assert final.status is RunStatus.CANCELED
    step_runs = driver.store.list_step_runs(run.run_id)
    assert [item.status for item in step_runs] == [StepRunStatus.CANCELED] * 2
    job = driver.executor.store.get_job(step_runs[0].job_id)
    assert job.status is JobStatus.CANCELED


def test_run_single_wraps_job(write_csv, id_rule_set: RuleSet) -> None:
    a = write_csv("a.csv", [{"id": 1}])
    job = ReconciliationJob(name="adhoc", source=a, target=a, rule_set=id_rule_set)
    driver = _driver()

    run = driver.run_single(job, "org-7")

    assert run.status is RunStatus.COMPLETED
    assert run.trigger_type == "SINGLE"
    assert run.organization_id == "org-7"
    (step_run,) = driver.store.list_step_runs(run.run_id)
    assert step_run.job_id == job.job_id


def test_job_runner_executes_in_background(write_csv, id_rule_set: RuleSet) -> None:
    a = write_csv("a.csv", [{"id": 1}])
    b = write_csv("b.csv", [{"id": 2}])
    executor = ReconciliationExecutor()
    job = ReconciliationJob(name="bg", source=a, target=b, rule_set=id_rule_set)

    with JobRunner(executor) as runner:
        handle = runner.submit(job)
        result = handle.result(timeout=10)

    assert handle.done()
    assert handle.status() is JobStatus.COMPLETED
    assert result.statistics.exception_count == 2
    with pytest.raises(InvalidStateTransitionError):
        handle.cancel()
