"""Contracts for the optional AI-assist collaborators.

Both operations are best effort: the executor logs and skips any failure and
never lets it change a job's status.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from smartrecon.reconcile.rules import FieldMapping


class PotentialMatch(BaseModel):
    """A pairing of unmatched records proposed by a second-pass search."""

    source_record: dict[str, Any]
    target_record: dict[str, Any]
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""

    def annotation(self) -> str:
        return f"{self.confidence * 100:.0f}% confidence - {self.reasoning}"


@runtime_checkable
class ExceptionAdvisor(Protocol):
    """Explains exceptions and proposes matches the key lookup missed."""

    def explain_exception(
        self,
        exception_type: str,
        source_value: str,
        target_value: str,
        field_name: str,
        reconciliation_name: str,
    ) -> str:
        """Return a short suggestion for resolving the exception."""

    def find_potential_matches(
        self,
        unmatched_sources: Sequence[Mapping[str, Any]],
        unmatched_targets: Sequence[Mapping[str, Any]],
        field_mappings: Sequence[FieldMapping],
    ) -> Sequence[PotentialMatch]:
        """Return candidate pairings between unmatched records."""


__all__ = ["ExceptionAdvisor", "PotentialMatch"]
