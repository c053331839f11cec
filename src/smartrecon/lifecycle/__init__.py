"""Run lifecycle: runs, step runs and the workers that drive them."""

from smartrecon.lifecycle.models import Run, RunStatus, Step, StepRun, StepRunStatus, Stream
from smartrecon.lifecycle.orchestrator import RunOrchestrator, resolve_terminal_status
from smartrecon.lifecycle.runner import JobHandle, JobRunner, RunDriver
from smartrecon.lifecycle.store import InMemoryRunStore, RunStore

__all__ = [
    "Run",
    "RunStatus",
    "Step",
    "StepRun",
    "StepRunStatus",
    "Stream",
    "RunOrchestrator",
    "resolve_terminal_status",
    "JobHandle",
    "JobRunner",
    "RunDriver",
    "InMemoryRunStore",
    "RunStore",
]
