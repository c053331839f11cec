"""Storage for streams, steps, runs and step runs."""

from __future__ import annotations

import copy
import threading
from typing import Protocol, runtime_checkable

from smartrecon.errors import NotFoundError
from smartrecon.lifecycle.models import Run, Step, StepRun, Stream


@runtime_checkable
class RunStore(Protocol):
    def add_stream(self, stream: Stream) -> None: ...

    def get_stream(self, stream_id: str) -> Stream: ...

    def add_step(self, step: Step) -> None: ...

    def get_step(self, step_id: str) -> Step: ...

    def list_steps(self, stream_id: str) -> list[Step]: ...

    def save_run(self, run: Run) -> None: ...

    def get_run(self, run_id: str) -> Run: ...

    def save_step_run(self, step_run: StepRun) -> None: ...

    def get_step_run(self, step_run_id: str) -> StepRun: ...

    def list_step_runs(self, run_id: str) -> list[StepRun]: ...


class InMemoryRunStore:
    """Thread-safe store handing out copies of its records."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._streams: dict[str, Stream] = {}
        self._steps: dict[str, Step] = {}
        self._runs: dict[str, Run] = {}
        self._step_runs: dict[str, StepRun] = {}

    def add_stream(self, stream: Stream) -> None:
        with self._lock:
            self._streams[stream.stream_id] = copy.deepcopy(stream)

    def get_stream(self, stream_id: str) -> Stream:
        with self._lock:
            return copy.deepcopy(self._lookup(self._streams, "Stream", stream_id))

    def add_step(self, step: Step) -> None:
        with self._lock:
            self._lookup(self._streams, "Stream", step.stream_id)
            self._steps[step.step_id] = copy.deepcopy(step)

    def get_step(self, step_id: str) -> Step:
        with self._lock:
            return copy.deepcopy(self._lookup(self._steps, "Step", step_id))

    def list_steps(self, stream_id: str) -> list[Step]:
        with self._lock:
            steps = [step for step in self._steps.values() if step.stream_id == stream_id]
            return [copy.deepcopy(step) for step in sorted(steps, key=lambda s: s.step_order)]

    def save_run(self, run: Run) -> None:
        with self._lock:
            self._runs[run.run_id] = copy.deepcopy(run)

    def get_run(self, run_id: str) -> Run:
        with self._lock:
            return copy.deepcopy(self._lookup(self._runs, "Run", run_id))

    def save_step_run(self, step_run: StepRun) -> None:
        with self._lock:
            self._step_runs[step_run.step_run_id] = copy.deepcopy(step_run)

    def get_step_run(self, step_run_id: str) -> StepRun:
        with self._lock:
            return copy.deepcopy(self._lookup(self._step_runs, "StepRun", step_run_id))

    def list_step_runs(self, run_id: str) -> list[StepRun]:
        with self._lock:
            items = [item for item in self._step_runs.values() if item.run_id == run_id]
            return [copy.deepcopy(item) for item in sorted(items, key=lambda s: s.step_order)]

    @staticmethod
    def _lookup(table: dict, entity: str, identifier: str):
        try:
            return table[identifier]
        except KeyError:
            raise NotFoundError(entity, identifier) from None


__all__ = ["InMemoryRunStore", "RunStore"]
