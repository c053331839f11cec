"""Tabular reconciliation engine with a supervised run lifecycle."""

from smartrecon.config import ReconcileSettings, load_settings
from smartrecon.errors import SmartReconError
from smartrecon.reconcile import (
    ExecutionResult,
    ReconciliationExecutor,
    ReconciliationJob,
    RuleSet,
    load_rule_set,
)
from smartrecon.parsing import CsvParser
from smartrecon.lifecycle import RunDriver, RunOrchestrator

__version__ = "0.1.0"

__all__ = [
    "CsvParser",
    "ExecutionResult",
    "ReconcileSettings",
    "ReconciliationExecutor",
    "ReconciliationJob",
    "RuleSet",
    "RunDriver",
    "RunOrchestrator",
    "SmartReconError",
    "__version__",
    "load_rule_set",
    "load_settings",
]
