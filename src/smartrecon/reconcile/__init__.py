"""Reconciliation diff engine: indexing, comparison, classification and execution."""

from smartrecon.reconcile.classifier import Classification, ExceptionClassifier
from smartrecon.reconcile.comparator import (
    FieldComparator,
    compare,
    levenshtein_distance,
    similarity,
)
from smartrecon.reconcile.indexer import RecordIndex, build_index, build_key
from smartrecon.reconcile.models import (
    ExceptionRecord,
    ExceptionSeverity,
    ExceptionStatus,
    ExceptionType,
    ExecutionResult,
    JobError,
    JobRecord,
    JobStatus,
    ReconciliationJob,
    ReconciliationStatistics,
)
from smartrecon.reconcile.rules import (
    FieldMapping,
    MatchingRule,
    MatchType,
    RuleSet,
    build_rule_set,
    load_rule_set,
    load_rule_set_config,
)
from smartrecon.reconcile.store import (
    InMemoryReconciliationStore,
    JsonReconciliationStore,
    ReconciliationStore,
)
from smartrecon.reconcile.values import NULL, FieldValue, Record, value_of
from smartrecon.reconcile.executor import (
    DiffResult,
    ReconciliationExecutor,
    reconcile_records,
)

__all__ = [
    "Classification",
    "ExceptionClassifier",
    "FieldComparator",
    "compare",
    "levenshtein_distance",
    "similarity",
    "RecordIndex",
    "build_index",
    "build_key",
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
    "FieldMapping",
    "MatchingRule",
    "MatchType",
    "RuleSet",
    "build_rule_set",
    "load_rule_set",
    "load_rule_set_config",
    "InMemoryReconciliationStore",
    "JsonReconciliationStore",
    "ReconciliationStore",
    "NULL",
    "FieldValue",
    "Record",
    "value_of",
    "DiffResult",
    "ReconciliationExecutor",
    "reconcile_records",
]
