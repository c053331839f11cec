"""Settings and rule-set loading shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path

from apps.reconctl.utils.errors import ReconctlIOError, translate
from smartrecon.config import ReconcileSettings, load_settings
from smartrecon.errors import SmartReconError
from smartrecon.reconcile.rules import RuleSet, load_rule_set


def resolve_settings(profile: str | None, workspace: Path | None = None) -> ReconcileSettings:
    try:
        return load_settings(profile=profile, workspace=workspace)
    except SmartReconError as exc:
        raise translate(exc) from exc


def resolve_rule_set(path: Path) -> RuleSet:
    try:
        return load_rule_set(path)
    except OSError as exc:
        raise ReconctlIOError(f"Unable to read rule set '{path}': {exc}") from exc
    except SmartReconError as exc:
        raise translate(exc) from exc
