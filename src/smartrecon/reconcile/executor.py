"""Reconciliation executor orchestrating parse, diff, persist and assist."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Callable, Iterable, Sequence

import structlog

from smartrecon.assist import ExceptionAdvisor
from smartrecon.config import ReconcileSettings
from smartrecon.errors import (
    InvalidStateTransitionError,
    NotFoundError,
    ParseError,
    SmartReconError,
)
from smartrecon.parsing import CsvParser, ParsedTable, Parser
from smartrecon.reconcile.classifier import ExceptionClassifier
from smartrecon.reconcile.comparator import FieldComparator
from smartrecon.reconcile.indexer import build_index
from smartrecon.reconcile.models import (
    ExceptionRecord,
    ExceptionSeverity,
    ExceptionType,
    ExecutionResult,
    JobError,
    JobRecord,
    JobStatus,
    ReconciliationJob,
    ReconciliationStatistics,
)
from smartrecon.reconcile.rules import RuleSet
from smartrecon.reconcile.store import InMemoryReconciliationStore, ReconciliationStore
from smartrecon.reconcile.values import Record

log = structlog.get_logger(__name__)

ProgressCallback = Callable[[str, int], None]

MILESTONES: dict[str, int] = {
    "started": 5,
    "parse-source": 20,
    "parse-target": 40,
    "diff-complete": 90,
    "persist-complete": 95,
    "completed": 100,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _or_na(value: str | None) -> str:
    return "N/A" if value is None else value


@dataclass(slots=True)
class DiffResult:
    statistics: ReconciliationStatistics
    exceptions: list[ExceptionRecord] = field(default_factory=list)


def reconcile_records(
    source: Sequence[Record],
    target: Sequence[Record],
    rule_set: RuleSet,
    *,
    settings: ReconcileSettings | None = None,
    classifier: ExceptionClassifier | None = None,
) -> DiffResult:
    """Index, classify and summarise two in-memory record sets.

    Raises :class:`~smartrecon.errors.InvalidRuleSetError` when the rule set
    has no key mapping.
    """

    settings = settings or ReconcileSettings()
    classifier = classifier or ExceptionClassifier(FieldComparator(settings))
    key_mappings = rule_set.require_keys()

    source_index = build_index(source, key_mappings, source=True, settings=settings)
    target_index = build_index(target, key_mappings, source=False, settings=settings)
    classification = classifier.classify(source_index, target_index, rule_set)

    statistics = ReconciliationStatistics.compute(
        total_source=len(source),
        total_target=len(target),
        matched=classification.matched,
        exception_count=len(classification.exceptions),
    )
    return DiffResult(statistics=statistics, exceptions=classification.exceptions)


class _Canceled(Exception):
    """Internal signal raised at a checkpoint once the job was canceled."""


class ReconciliationExecutor:
    """Run reconciliation jobs end to end.

    Job-fatal problems (unparseable input, rule sets without keys) never
    escape :meth:`execute`; they are recorded on the job and returned as a
    ``FAILED`` :class:`ExecutionResult`.  Assist failures are logged, attached
    as non-fatal warnings and otherwise ignored.
    """

    def __init__(
        self,
        store: ReconciliationStore | None = None,
        *,
        parser: Parser | None = None,
        advisor: ExceptionAdvisor | None = None,
        settings: ReconcileSettings | None = None,
    ) -> None:
        self.settings = settings or ReconcileSettings()
        self.store: ReconciliationStore = store or InMemoryReconciliationStore()
        self.parser: Parser = parser or CsvParser()
        self.advisor = advisor
        self.classifier = ExceptionClassifier(FieldComparator(self.settings))

    def create_job(self, job: ReconciliationJob) -> JobRecord:
        record = JobRecord(job_id=job.job_id, name=job.name)
        self.store.save_job(record)
        log.info("reconcile.job.created", job_id=job.job_id, name=job.name)
        return record

    def cancel_job(self, job_id: str) -> JobRecord:
        """Mark a pending or running job canceled.

        Running work stops at its next checkpoint.
        """

        def _cancel(record: JobRecord) -> None:
            if record.status.terminal:
                raise InvalidStateTransitionError(
                    "ReconciliationJob", record.status, JobStatus.CANCELED
                )
            record.status = JobStatus.CANCELED
            record.completed_at = _utcnow()

        record = self.store.update_job(job_id, _cancel)
        log.info("reconcile.job.canceled", job_id=job_id)
        return record

    def execute(
        self,
        job: ReconciliationJob,
        *,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Execute *job* and return its outcome."""

        start = perf_counter()
        job_id = job.job_id
        try:
            self.store.get_job(job_id)
        except NotFoundError:
            self.create_job(job)

        def _report(milestone: str, **changes: object) -> JobRecord:
            percent = MILESTONES[milestone]
            record = self._write(job_id, cancel_event, percent, **changes)
            if progress is not None:
                progress(milestone, percent)
            return record

        statistics = ReconciliationStatistics()
        exceptions: list[ExceptionRecord] = []
        warnings: list[JobError] = []
        try:
            _report("started", status=JobStatus.IN_PROGRESS, started_at=_utcnow())
            log.info("reconcile.executor.start", job_id=job_id, name=job.name)
            job.rule_set.require_keys()

            source_table = self._parse(job.source)
            _report("parse-source", total_source_records=source_table.row_count)
            target_table = self._parse(job.target)
            _report("parse-target", total_target_records=target_table.row_count)

            diff = reconcile_records(
                source_table.records(),
                target_table.records(),
                job.rule_set,
                settings=self.settings,
                classifier=self.classifier,
            )
            statistics = diff.statistics
            exceptions = diff.exceptions
            self._write(job_id, cancel_event, None, statistics=statistics)
            _report("diff-complete")

            self.store.add_exceptions(job_id, exceptions)
            _report("persist-complete")

            if self.advisor is not None:
                warnings.extend(self._populate_suggestions(job, exceptions, cancel_event))
                exceptions.extend(self._second_pass(job, exceptions, warnings))

            _report("completed", status=JobStatus.COMPLETED, completed_at=_utcnow())
        except _Canceled:
            self._settle_canceled(job_id)
            log.info("reconcile.executor.canceled", job_id=job_id)
            return self._result(job_id, JobStatus.CANCELED, start, statistics, exceptions, warnings)
        except SmartReconError as exc:
            log.error("reconcile.executor.failed", job_id=job_id, code=exc.code, error=exc.message)
            error = JobError(code=exc.code, message=exc.message, context=exc.context)
            return self._fail(job_id, error, start, statistics, exceptions, warnings)
        except Exception as exc:
            log.exception("reconcile.executor.error", job_id=job_id)
            error = JobError(code="job.unexpected", message=str(exc))
            return self._fail(job_id, error, start, statistics, exceptions, warnings)

        log.info(
            "reconcile.executor.completed",
            job_id=job_id,
            matched=statistics.matched_records,
            exceptions=len(exceptions),
        )
        return self._result(job_id, JobStatus.COMPLETED, start, statistics, exceptions, warnings)

    def _parse(self, path: Path) -> ParsedTable:
        try:
            return self.parser.parse(path)
        except SmartReconError:
            raise
        except Exception as exc:
            raise ParseError(
                f"Failed to parse '{path}': {exc}", context={"path": str(path)}
            ) from exc

    def _write(
        self,
        job_id: str,
        cancel_event: threading.Event | None,
        percent: int | None,
        *,
        statistics: ReconciliationStatistics | None = None,
        **changes: object,
    ) -> JobRecord:
        if cancel_event is not None and cancel_event.is_set():
            raise _Canceled()

        canceled = False

        def _mutate(record: JobRecord) -> None:
            nonlocal canceled
            if record.status is JobStatus.CANCELED:
                canceled = True
                return
            if percent is not None:
                record.progress = percent
            if statistics is not None:
                record.apply_statistics(statistics)
            for name, value in changes.items():
                setattr(record, name, value)

        record = self.store.update_job(job_id, _mutate)
        if canceled:
            raise _Canceled()
        return record

    def _settle_canceled(self, job_id: str) -> None:
        def _cancel(record: JobRecord) -> None:
            if not record.status.terminal:
                record.status = JobStatus.CANCELED
                record.completed_at = _utcnow()

        self.store.update_job(job_id, _cancel)

    def _fail(
        self,
        job_id: str,
        error: JobError,
        start: float,
        statistics: ReconciliationStatistics,
        exceptions: list[ExceptionRecord],
        warnings: list[JobError],
    ) -> ExecutionResult:
        try:
            self._write(
                job_id,
                None,
                None,
                status=JobStatus.FAILED,
                error_message=error.message,
                completed_at=_utcnow(),
            )
        except _Canceled:
            return self._result(job_id, JobStatus.CANCELED, start, statistics, exceptions, warnings)
        return self._result(
            job_id, JobStatus.FAILED, start, statistics, exceptions, warnings, error=error
        )

    @staticmethod
    def _result(
        job_id: str,
        status: JobStatus,
        start: float,
        statistics: ReconciliationStatistics,
        exceptions: Iterable[ExceptionRecord],
        warnings: Iterable[JobError],
        *,
        error: JobError | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            job_id=job_id,
            status=status,
            statistics=statistics,
            exceptions=list(exceptions),
            error=error,
            warnings=list(warnings),
            runtime_seconds=perf_counter() - start,
        )

    def _populate_suggestions(
        self,
        job: ReconciliationJob,
        exceptions: list[ExceptionRecord],
        cancel_event: threading.Event | None,
    ) -> list[JobError]:
        if not self.settings.enable_ai_suggestions or self.advisor is None:
            return []

        warnings: list[JobError] = []
        limit = min(len(exceptions), self.settings.ai_suggestion_max_exceptions)
        batch_size = self.settings.ai_suggestion_batch_size
        log.info("reconcile.assist.suggestions", job_id=job.job_id, count=limit)

        for batch_start in range(0, limit, batch_size):
            if batch_start:
                self._write(job.job_id, cancel_event, None)
            for index in range(batch_start, min(batch_start + batch_size, limit)):
                exception = exceptions[index]
                try:
                    suggestion = self.advisor.explain_exception(
                        exception.type.value,
                        _or_na(exception.source_value),
                        _or_na(exception.target_value),
                        _or_na(exception.field_name),
                        job.name,
                    )
                except Exception as exc:
                    log.warning(
                        "reconcile.assist.suggestion_failed",
                        job_id=job.job_id,
                        exception_id=exception.exception_id,
                        error=str(exc),
                    )
                    warnings.append(
                        JobError(
                            code="assist.suggestion_failed",
                            message=str(exc),
                            fatal=False,
                            context={"exception_id": exception.exception_id},
                        )
                    )
                    continue
                updated = exception.model_copy(update={"ai_suggestion": suggestion})
                self.store.update_exception(job.job_id, updated)
                exceptions[index] = updated
        return warnings

    def _second_pass(
        self,
        job: ReconciliationJob,
        exceptions: Sequence[ExceptionRecord],
        warnings: list[JobError],
    ) -> list[ExceptionRecord]:
        if not self.settings.enable_potential_matches or self.advisor is None:
            return []

        unmatched = sum(1 for exception in exceptions if exception.is_unmatched)
        if not 0 < unmatched <= self.settings.potential_match_max_unmatched:
            return []

        sources = [
            exception.source_record
            for exception in exceptions
            if exception.type is ExceptionType.MISSING_TARGET and exception.source_record is not None
        ]
        targets = [
            exception.target_record
            for exception in exceptions
            if exception.type is ExceptionType.MISSING_SOURCE and exception.target_record is not None
        ]
        if not sources or not targets:
            return []

        log.info(
            "reconcile.assist.second_pass",
            job_id=job.job_id,
            sources=len(sources),
            targets=len(targets),
        )
        try:
            suggestions = self.advisor.find_potential_matches(
                sources, targets, job.rule_set.field_mappings
            )
        except Exception as exc:
            log.warning("reconcile.assist.second_pass_failed", job_id=job.job_id, error=str(exc))
            warnings.append(
                JobError(code="assist.second_pass_failed", message=str(exc), fatal=False)
            )
            return []

        potential = [
            ExceptionRecord(
                type=ExceptionType.POTENTIAL_MATCH,
                severity=ExceptionSeverity.MEDIUM,
                description="AI identified a potential match missed by key-based matching",
                source_record=dict(suggestion.source_record),
                target_record=dict(suggestion.target_record),
                ai_suggestion=suggestion.annotation(),
            )
            for suggestion in suggestions
        ]
        if potential:
            self.store.add_exceptions(job.job_id, potential)
            log.info("reconcile.assist.potential_matches", job_id=job.job_id, count=len(potential))
        return potential


__all__ = [
    "DiffResult",
    "MILESTONES",
    "ProgressCallback",
    "ReconciliationExecutor",
    "reconcile_records",
]
