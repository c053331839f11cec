"""Typer command reconciling two CSV files against a rule set."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Optional

import structlog
import typer

from apps.reconctl.reports import write_csv_report, write_json_report
from apps.reconctl.settings import resolve_rule_set, resolve_settings
from apps.reconctl.utils.errors import ReconctlIOError, error_for_code
from apps.reconctl.utils.progress import progress_tracker
from smartrecon.lifecycle.runner import JobRunner
from smartrecon.reconcile.executor import ReconciliationExecutor
from smartrecon.reconcile.models import ReconciliationJob

log = structlog.get_logger(__name__)


def reconcile(
    source: Path = typer.Option(..., "--source", help="Source CSV file"),
    target: Path = typer.Option(..., "--target", help="Target CSV file"),
    rules: Path = typer.Option(..., "--rules", help="Rule set file (YAML or JSON)"),
    name: Optional[str] = typer.Option(None, "--name", help="Reconciliation name"),
    json_report: Optional[Path] = typer.Option(
        None,
        "--json",
        help="Path to write a JSON report of exceptions",
    ),
    csv_report: Optional[Path] = typer.Option(
        None,
        "--csv",
        help="Path to write a CSV report of exceptions",
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", help="Configuration profile to load"
    ),
) -> None:
    """Compare SOURCE with TARGET and report every discrepancy."""

    settings = resolve_settings(profile)
    rule_set = resolve_rule_set(rules)
    job = ReconciliationJob(
        name=name or rule_set.name,
        source=source,
        target=target,
        rule_set=rule_set,
    )
    log.info("reconctl.reconcile.start", job_id=job.job_id, source=str(source), target=str(target))

    executor = ReconciliationExecutor(settings=settings)
    with progress_tracker(f"Reconcile {job.name}") as tracker:
        with JobRunner(executor, settings) as runner:
            handle = runner.submit(job, progress=tracker.milestone)
            result = handle.result()
        if result.ok:
            tracker.succeed(
                f"Matched {result.statistics.matched_records} of "
                f"{result.statistics.total_source_records} source record(s)."
            )
        else:
            tracker.fail(f"Reconciliation {result.status.value.lower()}.")

    if result.error is not None:
        raise error_for_code(result.error.code, result.error.message)
    for warning in result.warnings:
        typer.secho(f"Warning: {warning.message}", fg=typer.colors.YELLOW, err=True)

    stats = result.statistics
    typer.secho(
        f"Source records: {stats.total_source_records}  "
        f"Target records: {stats.total_target_records}  "
        f"Matched: {stats.matched_records}  "
        f"Match rate: {stats.match_rate:.2f}%",
        fg=typer.colors.CYAN,
    )
    totals = Counter(exception.type.value for exception in result.exceptions)
    if totals:
        typer.secho("Exceptions detected:", fg=typer.colors.YELLOW)
        for key, count in sorted(totals.items()):
            typer.secho(f"  {key}: {count}", fg=typer.colors.YELLOW)
    else:
        typer.secho("Source and target are reconciled", fg=typer.colors.GREEN)

    try:
        if csv_report:
            write_csv_report(csv_report, result.exceptions)
            typer.secho(f"Wrote CSV report to {csv_report}", fg=typer.colors.BLUE)
        if json_report:
            write_json_report(json_report, result.exceptions)
            typer.secho(f"Wrote JSON report to {json_report}", fg=typer.colors.BLUE)
    except OSError as exc:
        raise ReconctlIOError(f"Unable to write report: {exc}") from exc

    if result.exceptions:
        raise typer.Exit(code=1)


__all__ = ["reconcile"]
