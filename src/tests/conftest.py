"""Shared pytest fixtures for reconciliation tests."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

import pytest

from smartrecon.assist import PotentialMatch
from smartrecon.reconcile.rules import FieldMapping, MatchingRule, RuleSet


CsvWriter = Callable[[str, Sequence[Mapping[str, Any]]], Path]


@pytest.fixture()
def write_csv(tmp_path: Path) -> CsvWriter:
    """Write rows to ``tmp_path / name`` using the union of their keys as headers."""

    def _write(name: str, rows: Sequence[Mapping[str, Any]]) -> Path:
        headers: list[str] = []
        for row in rows:
            for key in row:
                if key not in headers:
                    headers.append(key)
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=headers or ["id"])
            writer.writeheader()
            for row in rows:
                writer.writerow({key: "" if value is None else value for key, value in row.items()})
        return path

    return _write


@pytest.fixture()
def id_rule_set() -> RuleSet:
    return RuleSet(
        name="ledger",
        field_mappings=(FieldMapping(source_field="id", target_field="id", is_key=True),),
    )


@pytest.fixture()
def ledger_rule_set() -> RuleSet:
    return RuleSet(
        name="ledger",
        field_mappings=(
            FieldMapping(source_field="id", target_field="ref", is_key=True),
            FieldMapping(source_field="amount", target_field="total"),
            FieldMapping(source_field="customer", target_field="client"),
        ),
        matching_rules=(
            MatchingRule(
                source_field="amount", target_field="total", match_type="RANGE", tolerance=0.5
            ),
            MatchingRule(
                source_field="customer",
                target_field="client",
                match_type="FUZZY",
                fuzzy_threshold=0.8,
            ),
        ),
    )


class RecordingAdvisor:
    """Advisor double recording calls and returning canned answers."""

    def __init__(
        self,
        *,
        explanation: str = "Check the upstream export",
        matches: Iterable[PotentialMatch] = (),
        fail_on: Iterable[str] = (),
        fail_matches: bool = False,
    ) -> None:
        self.explanation = explanation
        self.matches = list(matches)
        self.fail_on = set(fail_on)
        self.fail_matches = fail_matches
        self.explained: list[tuple[str, str, str, str, str]] = []
        self.match_requests: list[tuple[list[Any], list[Any]]] = []

    def explain_exception(
        self,
        exception_type: str,
        source_value: str,
        target_value: str,
        field_name: str,
        reconciliation_name: str,
    ) -> str:
        self.explained.append(
            (exception_type, source_value, target_value, field_name, reconciliation_name)
        )
        if exception_type in self.fail_on:
            raise RuntimeError("assistant unavailable")
        return self.explanation

    def find_potential_matches(self, unmatched_sources, unmatched_targets, field_mappings):
        self.match_requests.append((list(unmatched_sources), list(unmatched_targets)))
        if self.fail_matches:
            raise RuntimeError("assistant unavailable")
        return self.matches


@pytest.fixture()
def advisor_factory() -> Callable[..., RecordingAdvisor]:
    return RecordingAdvisor
