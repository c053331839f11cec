"""Data models produced and persisted by reconciliation jobs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, Field

from smartrecon.reconcile.rules import RuleSet


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class ExceptionType(str, Enum):
    MISSING_SOURCE = "MISSING_SOURCE"
    MISSING_TARGET = "MISSING_TARGET"
    VALUE_MISMATCH = "VALUE_MISMATCH"
    DUPLICATE = "DUPLICATE"
    POTENTIAL_MATCH = "POTENTIAL_MATCH"
    FORMAT_ERROR = "FORMAT_ERROR"
    TOLERANCE_EXCEEDED = "TOLERANCE_EXCEEDED"


class ExceptionSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ExceptionStatus(str, Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_REVIEW = "IN_REVIEW"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"


class ExceptionRecord(BaseModel):
    """A detected discrepancy between source and target data."""

    exception_id: str = Field(default_factory=_new_id)
    type: ExceptionType
    severity: ExceptionSeverity
    status: ExceptionStatus = ExceptionStatus.OPEN
    description: str | None = None
    field_name: str | None = None
    source_value: str | None = None
    target_value: str | None = None
    source_record: dict[str, Any] | None = None
    target_record: dict[str, Any] | None = None
    ai_suggestion: str | None = None
    resolution: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_unmatched(self) -> bool:
        return self.type in (ExceptionType.MISSING_SOURCE, ExceptionType.MISSING_TARGET)

    def resolve(self, resolution: str, *, resolved_by: str | None = None) -> "ExceptionRecord":
        """Return a resolved copy for case-management collaborators."""

        return self.model_copy(
            update={
                "status": ExceptionStatus.RESOLVED,
                "resolution": resolution,
                "resolved_by": resolved_by,
                "resolved_at": _utcnow(),
            }
        )

    def ignore(self, *, resolved_by: str | None = None) -> "ExceptionRecord":
        return self.model_copy(
            update={
                "status": ExceptionStatus.IGNORED,
                "resolved_by": resolved_by,
                "resolved_at": _utcnow(),
            }
        )


class ReconciliationStatistics(BaseModel):
    total_source_records: int = 0
    total_target_records: int = 0
    matched_records: int = 0
    unmatched_source_records: int = 0
    unmatched_target_records: int = 0
    exception_count: int = 0
    match_rate: float = 0.0

    @classmethod
    def compute(
        cls,
        *,
        total_source: int,
        total_target: int,
        matched: int,
        exception_count: int,
    ) -> "ReconciliationStatistics":
        match_rate = (matched * 100.0) / total_source if total_source else 0.0
        return cls(
            total_source_records=total_source,
            total_target_records=total_target,
            matched_records=matched,
            unmatched_source_records=total_source - matched,
            unmatched_target_records=total_target - matched,
            exception_count=exception_count,
            match_rate=match_rate,
        )


class ReconciliationJob(BaseModel):
    """Definition of one source/target comparison."""

    job_id: str = Field(default_factory=_new_id)
    name: str
    source: Path
    target: Path
    rule_set: RuleSet


class JobStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED)


class JobRecord(BaseModel):
    """Persisted summary of a reconciliation job."""

    job_id: str
    name: str
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    total_source_records: int = 0
    total_target_records: int = 0
    matched_records: int = 0
    unmatched_source_records: int = 0
    unmatched_target_records: int = 0
    exception_count: int = 0
    match_rate: float = 0.0
    statistics: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def apply_statistics(self, stats: ReconciliationStatistics) -> None:
        self.total_source_records = stats.total_source_records
        self.total_target_records = stats.total_target_records
        self.matched_records = stats.matched_records
        self.unmatched_source_records = stats.unmatched_source_records
        self.unmatched_target_records = stats.unmatched_target_records
        self.exception_count = stats.exception_count
        self.match_rate = stats.match_rate
        self.statistics = stats.model_dump(exclude={"match_rate"})


class JobError(BaseModel):
    """Failure attached to an :class:`ExecutionResult`.

    ``fatal`` errors stopped the job; the others were logged and skipped.
    """

    code: str
    message: str
    fatal: bool = True
    context: Mapping[str, Any] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """Outcome returned by the executor instead of raising."""

    job_id: str
    status: JobStatus
    statistics: ReconciliationStatistics = Field(default_factory=ReconciliationStatistics)
    exceptions: Sequence[ExceptionRecord] = ()
    error: JobError | None = None
    warnings: Sequence[JobError] = ()
    runtime_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.COMPLETED


__all__ = [
    "ExceptionRecord",
    "ExceptionSeverity",
    "ExceptionStatus",
    "ExceptionType",
    "ExecutionResult",
    "JobError",
    "JobRecord",
    "JobStatus",
    "ReconciliationJob",
    "ReconciliationStatistics",
]
