"""Entities tracked by the run lifecycle."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from smartrecon.reconcile.rules import RuleSet


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    PARTIAL_FAILED = "PARTIAL_FAILED"


class StepRunStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RETRY_WAIT = "RETRY_WAIT"
    SKIPPED = "SKIPPED"
    CANCELED = "CANCELED"


RUN_TERMINAL_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELED, RunStatus.PARTIAL_FAILED}
)
STEP_RUN_TERMINAL_STATUSES = frozenset(
    {
        StepRunStatus.COMPLETED,
        StepRunStatus.FAILED,
        StepRunStatus.SKIPPED,
        StepRunStatus.CANCELED,
    }
)
RUN_CANCELABLE_STATUSES = frozenset(
    {RunStatus.PENDING, RunStatus.RUNNING, RunStatus.PARTIAL_FAILED}
)
STEP_RUN_CANCELABLE_STATUSES = frozenset(
    {StepRunStatus.PENDING, StepRunStatus.IN_PROGRESS, StepRunStatus.RETRY_WAIT}
)


@dataclass(slots=True)
class Stream:
    """An organization-owned pipeline of ordered reconciliation steps."""

    organization_id: str
    name: str
    stream_id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class Step:
    stream_id: str
    step_order: int
    name: str
    source: Path
    target: Path
    rule_set: RuleSet
    step_id: str = field(default_factory=_new_id)


class _StatusHistoryMixin:
    """Keep ``status_history`` in sync with ``status`` changes."""

    __slots__ = ()

    def transition(self, status, *, now: datetime | None = None) -> None:
        moment = now or _utcnow()
        self.status = status
        self.updated_at = moment
        self.status_history.append((status, moment))


@dataclass(slots=True)
class Run(_StatusHistoryMixin):
    """One execution attempt of a stream."""

    stream_id: str
    organization_id: str
    status: RunStatus = RunStatus.PENDING
    current_step_order: int = 0
    trigger_type: str = "MANUAL"
    error_message: str | None = None
    run_id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    status_history: list[tuple[RunStatus, datetime]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at
        if not self.status_history:
            self.status_history.append((self.status, self.created_at))

    @property
    def terminal(self) -> bool:
        return self.status in RUN_TERMINAL_STATUSES


@dataclass(slots=True)
class StepRun(_StatusHistoryMixin):
    """Execution record of one ordered step within a run."""

    run_id: str
    step_id: str
    step_order: int
    status: StepRunStatus = StepRunStatus.PENDING
    attempt_no: int = 1
    progress: int = 0
    job_id: str | None = None
    error_message: str | None = None
    step_run_id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    status_history: list[tuple[StepRunStatus, datetime]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at
        if not self.status_history:
            self.status_history.append((self.status, self.created_at))

    @property
    def terminal(self) -> bool:
        return self.status in STEP_RUN_TERMINAL_STATUSES


__all__ = [
    "RUN_CANCELABLE_STATUSES",
    "RUN_TERMINAL_STATUSES",
    "STEP_RUN_CANCELABLE_STATUSES",
    "STEP_RUN_TERMINAL_STATUSES",
    "Run",
    "RunStatus",
    "Step",
    "StepRun",
    "StepRunStatus",
    "Stream",
]
