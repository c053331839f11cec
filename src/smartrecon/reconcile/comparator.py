"""Field comparison strategies for reconciliation rules."""

from __future__ import annotations

from typing import Callable, Mapping

from smartrecon.config import ReconcileSettings
from smartrecon.reconcile.rules import MatchingRule, MatchType
from smartrecon.reconcile.values import FieldValue


def levenshtein_distance(lhs: str, rhs: str) -> int:
    """Classic edit distance using a rolling row."""

    if len(lhs) < len(rhs):
        lhs, rhs = rhs, lhs
    previous = list(range(len(rhs) + 1))
    for i, left_char in enumerate(lhs, start=1):
        current = [i]
        for j, right_char in enumerate(rhs, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(
                min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
            )
        previous = current
    return previous[-1]


def similarity(lhs: str, rhs: str) -> float:
    """Return ``(maxLen - distance) / maxLen`` over lowercased strings.

    Two empty strings are identical and score ``1.0``.
    """

    lhs = lhs.lower()
    rhs = rhs.lower()
    longest = max(len(lhs), len(rhs))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(lhs, rhs)) / longest


def _either_way(
    lhs: str, rhs: str, relation: Callable[[str, str], bool]
) -> bool:
    left = lhs.lower()
    right = rhs.lower()
    return relation(right, left) or relation(left, right)


class FieldComparator:
    """Evaluate a pair of values against an optional :class:`MatchingRule`."""

    def __init__(self, settings: ReconcileSettings | None = None) -> None:
        self.settings = settings or ReconcileSettings()
        self._strategies: Mapping[
            MatchType, Callable[[FieldValue, FieldValue, MatchingRule], bool]
        ] = {
            MatchType.EXACT: self._exact,
            MatchType.FUZZY: self._fuzzy,
            MatchType.RANGE: self._range,
            MatchType.CONTAINS: self._contains,
            MatchType.STARTS_WITH: self._starts_with,
            MatchType.ENDS_WITH: self._ends_with,
        }

    def compare(
        self,
        source: FieldValue,
        target: FieldValue,
        rule: MatchingRule | None = None,
    ) -> bool:
        if source.is_null and target.is_null:
            return True
        if source.is_null or target.is_null:
            return False
        if rule is None:
            return self._exact(source, target, rule)
        strategy = self._strategies.get(rule.match_type, self._exact)
        return strategy(source, target, rule)

    __call__ = compare

    @staticmethod
    def _exact(
        source: FieldValue, target: FieldValue, rule: MatchingRule | None
    ) -> bool:
        return source.text() == target.text()

    def _fuzzy(
        self, source: FieldValue, target: FieldValue, rule: MatchingRule
    ) -> bool:
        threshold = (
            rule.fuzzy_threshold
            if rule.fuzzy_threshold is not None
            else self.settings.default_fuzzy_threshold
        )
        return similarity(source.text(), target.text()) >= threshold

    def _range(
        self, source: FieldValue, target: FieldValue, rule: MatchingRule
    ) -> bool:
        lhs = source.number()
        rhs = target.number()
        if lhs is None or rhs is None:
            return False
        tolerance = (
            rule.tolerance if rule.tolerance is not None else self.settings.default_tolerance
        )
        return abs(lhs - rhs) <= tolerance

    @staticmethod
    def _contains(
        source: FieldValue, target: FieldValue, rule: MatchingRule
    ) -> bool:
        return _either_way(source.text(), target.text(), lambda a, b: b in a)

    @staticmethod
    def _starts_with(
        source: FieldValue, target: FieldValue, rule: MatchingRule
    ) -> bool:
        return _either_way(source.text(), target.text(), str.startswith)

    @staticmethod
    def _ends_with(
        source: FieldValue, target: FieldValue, rule: MatchingRule
    ) -> bool:
        return _either_way(source.text(), target.text(), str.endswith)


def compare(
    source: FieldValue,
    target: FieldValue,
    rule: MatchingRule | None = None,
    *,
    settings: ReconcileSettings | None = None,
) -> bool:
    """Convenience wrapper around :meth:`FieldComparator.compare`."""

    return FieldComparator(settings).compare(source, target, rule)


__all__ = ["FieldComparator", "compare", "levenshtein_distance", "similarity"]
