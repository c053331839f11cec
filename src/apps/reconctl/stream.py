"""Typer command executing a multi-step stream definition."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import structlog
import typer
import yaml
from pydantic import BaseModel, Field, ValidationError

from apps.reconctl.settings import resolve_rule_set, resolve_settings
from apps.reconctl.utils.errors import (
    ReconctlIOError,
    ReconctlValidationError,
    translate,
)
from smartrecon.errors import SmartReconError
from smartrecon.lifecycle.models import RunStatus, Step, StepRunStatus, Stream
from smartrecon.lifecycle.orchestrator import RunOrchestrator
from smartrecon.lifecycle.runner import RunDriver
from smartrecon.reconcile.executor import ReconciliationExecutor

log = structlog.get_logger(__name__)

DEFAULT_ORGANIZATION = "local"

_STATUS_COLOURS = {
    StepRunStatus.COMPLETED: typer.colors.GREEN,
    StepRunStatus.FAILED: typer.colors.RED,
    StepRunStatus.SKIPPED: typer.colors.YELLOW,
    StepRunStatus.CANCELED: typer.colors.YELLOW,
}


class StepDefinition(BaseModel):
    name: Optional[str] = None
    source: Path
    target: Path
    rules: Path


class StreamDefinition(BaseModel):
    """YAML document describing a stream and its ordered steps."""

    name: str
    organization: Optional[str] = None
    steps: List[StepDefinition] = Field(default_factory=list)


def load_stream_definition(path: Path) -> StreamDefinition:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ReconctlIOError(f"Unable to read stream definition '{path}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise ReconctlValidationError(f"Stream definition '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ReconctlValidationError(f"Stream definition '{path}' must be a mapping")
    data.setdefault("name", path.stem)
    try:
        return StreamDefinition.model_validate(data)
    except ValidationError as exc:
        raise ReconctlValidationError(str(exc)) from exc


def build_stream(
    definition: StreamDefinition, organization_id: str, *, base_dir: Path
) -> tuple[Stream, list[Step]]:
    """Resolve step paths against *base_dir* and load every rule set."""

    stream = Stream(organization_id=organization_id, name=definition.name)
    steps = []
    for order, item in enumerate(definition.steps, start=1):
        rule_set = resolve_rule_set(base_dir / item.rules)
        steps.append(
            Step(
                stream_id=stream.stream_id,
                step_order=order,
                name=item.name or rule_set.name,
                source=base_dir / item.source,
                target=base_dir / item.target,
                rule_set=rule_set,
            )
        )
    return stream, steps


def stream(
    definition: Path = typer.Option(..., "--definition", help="Stream definition YAML"),
    organization: Optional[str] = typer.Option(
        None, "--organization", help="Organization executing the stream"
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", help="Configuration profile to load"
    ),
) -> None:
    """Execute every step of a stream and report the run outcome."""

    settings = resolve_settings(profile)
    document = load_stream_definition(definition)
    organization_id = organization or document.organization or DEFAULT_ORGANIZATION
    stream_model, steps = build_stream(
        document, organization_id, base_dir=definition.resolve().parent
    )

    driver = RunDriver(
        RunOrchestrator(),
        ReconciliationExecutor(settings=settings),
        settings,
    )
    driver.register(stream_model, steps)
    log.info("reconctl.stream.start", stream=document.name, steps=len(steps))
    try:
        run = driver.run(stream_model.stream_id, organization_id)
    except SmartReconError as exc:
        raise translate(exc) from exc

    names = {step.step_id: step.name for step in steps}
    typer.secho(f"Stream {document.name} (run {run.run_id})", fg=typer.colors.CYAN)
    for step_run in driver.store.list_step_runs(run.run_id):
        line = (
            f"  [{step_run.step_order}] {names[step_run.step_id]}: "
            f"{step_run.status.value} (attempt {step_run.attempt_no})"
        )
        if step_run.error_message:
            line += f" - {step_run.error_message}"
        typer.secho(line, fg=_STATUS_COLOURS.get(step_run.status))

    colour = typer.colors.GREEN if run.status is RunStatus.COMPLETED else typer.colors.RED
    typer.secho(f"Run status: {run.status.value}", fg=colour)
    if run.status is not RunStatus.COMPLETED:
        raise typer.Exit(code=1)


__all__ = ["StreamDefinition", "build_stream", "load_stream_definition", "stream"]
