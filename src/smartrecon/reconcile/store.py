"""Persistence for job summaries and exception records."""

from __future__ import annotations

import json
import os
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol, Sequence, runtime_checkable

import structlog

from smartrecon.errors import NotFoundError
from smartrecon.reconcile.models import ExceptionRecord, JobRecord

log = structlog.get_logger(__name__)

JobMutation = Callable[[JobRecord], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialise_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


@runtime_checkable
class ReconciliationStore(Protocol):
    """Durable storage for jobs and their exceptions.

    ``update_job`` applies *mutate* to the stored record atomically, so a
    reader always sees either the previous or the next state of a job.
    """

    def save_job(self, record: JobRecord) -> None: ...

    def get_job(self, job_id: str) -> JobRecord: ...

    def update_job(self, job_id: str, mutate: JobMutation) -> JobRecord: ...

    def add_exceptions(self, job_id: str, exceptions: Sequence[ExceptionRecord]) -> None: ...

    def update_exception(self, job_id: str, exception: ExceptionRecord) -> None: ...

    def list_exceptions(self, job_id: str) -> list[ExceptionRecord]: ...


class InMemoryReconciliationStore:
    """Thread-safe store keeping copies of every record."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: dict[str, JobRecord] = {}
        self._exceptions: dict[str, list[ExceptionRecord]] = {}

    def save_job(self, record: JobRecord) -> None:
        with self._lock:
            self._jobs[record.job_id] = record.model_copy(deep=True)
            self._exceptions.setdefault(record.job_id, [])
            self._changed()

    def get_job(self, job_id: str) -> JobRecord:
        with self._lock:
            return self._require(job_id).model_copy(deep=True)

    def update_job(self, job_id: str, mutate: JobMutation) -> JobRecord:
        with self._lock:
            record = self._require(job_id).model_copy(deep=True)
            mutate(record)
            self._jobs[job_id] = record
            self._changed()
            return record.model_copy(deep=True)

    def add_exceptions(self, job_id: str, exceptions: Sequence[ExceptionRecord]) -> None:
        with self._lock:
            self._require(job_id)
            self._exceptions[job_id].extend(item.model_copy(deep=True) for item in exceptions)
            self._changed()

    def update_exception(self, job_id: str, exception: ExceptionRecord) -> None:
        with self._lock:
            self._require(job_id)
            items = self._exceptions[job_id]
            for index, existing in enumerate(items):
                if existing.exception_id == exception.exception_id:
                    items[index] = exception.model_copy(deep=True)
                    self._changed()
                    return
            raise NotFoundError("ExceptionRecord", exception.exception_id)

    def list_exceptions(self, job_id: str) -> list[ExceptionRecord]:
        with self._lock:
            self._require(job_id)
            return [item.model_copy(deep=True) for item in self._exceptions[job_id]]

    def _require(self, job_id: str) -> JobRecord:
        record = self._jobs.get(job_id)
        if record is None:
            raise NotFoundError("ReconciliationJob", job_id)
        return record

    def _changed(self) -> None:
        """Hook invoked under the lock after every mutation."""


@dataclass(slots=True)
class StoreStats:
    """Metrics about load and save activity of :class:`JsonReconciliationStore`."""

    jobs: int = 0
    exceptions: int = 0
    last_load_at: datetime | None = None
    last_save_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["last_load_at"] = _serialise_datetime(self.last_load_at)
        data["last_save_at"] = _serialise_datetime(self.last_save_at)
        return data


class JsonReconciliationStore(InMemoryReconciliationStore):
    """JSON file backed store; every mutation rewrites the file atomically."""

    def __init__(self, path: os.PathLike[str] | str) -> None:
        super().__init__()
        self._path = Path(path)
        self._stats = StoreStats()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def stats(self) -> StoreStats:
        return self._stats

    def _load(self) -> None:
        self._stats.last_load_at = _utcnow()
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("reconcile.store.read_failed", path=str(self._path), error=str(exc))
            return
        if not isinstance(payload, dict):
            log.warning("reconcile.store.invalid_payload", path=str(self._path))
            return

        for item in payload.get("jobs", []):
            try:
                record = JobRecord.model_validate(item)
            except ValueError as exc:
                log.warning("reconcile.store.record_invalid", error=str(exc))
                continue
            self._jobs[record.job_id] = record
            self._exceptions[record.job_id] = []

        for job_id, items in (payload.get("exceptions") or {}).items():
            if job_id not in self._jobs:
                continue
            for item in items:
                try:
                    self._exceptions[job_id].append(ExceptionRecord.model_validate(item))
                except ValueError as exc:
                    log.warning("reconcile.store.exception_invalid", error=str(exc))
        self._refresh_counts()

    def _refresh_counts(self) -> None:
        self._stats.jobs = len(self._jobs)
        self._stats.exceptions = sum(len(items) for items in self._exceptions.values())

    def _changed(self) -> None:
        payload = {
            "jobs": [record.model_dump(mode="json") for record in self._jobs.values()],
            "exceptions": {
                job_id: [item.model_dump(mode="json") for item in items]
                for job_id, items in self._exceptions.items()
            },
        }
        self._write_payload(json.dumps(payload, indent=2, sort_keys=True))
        self._refresh_counts()

    def _write_payload(self, serialised: str) -> None:
        moment = _utcnow()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        backup_path = self._path.with_suffix(self._path.suffix + ".bak")
        backup_created = False

        if self._path.exists():
            os.replace(self._path, backup_path)
            backup_created = True

        try:
            tmp_path.write_text(serialised, encoding="utf-8")
            os.replace(tmp_path, self._path)
        except Exception:  # pragma: no cover - restore the previous file
            if backup_created and backup_path.exists():
                os.replace(backup_path, self._path)
            raise
        finally:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass

        if backup_created:
            try:
                backup_path.unlink()
            except FileNotFoundError:
                pass

        self._stats.last_save_at = moment


__all__ = [
    "InMemoryReconciliationStore",
    "JsonReconciliationStore",
    "ReconciliationStore",
    "StoreStats",
]
