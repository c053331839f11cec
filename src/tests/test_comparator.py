from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from smartrecon.config import ReconcileSettings
from smartrecon.reconcile.comparator import (
    FieldComparator,
    compare,
    levenshtein_distance,
    similarity,
)
from smartrecon.reconcile.rules import MatchingRule, MatchType
from smartrecon.reconcile.values import NULL, value_of


def _rule(match_type: MatchType, **kwargs: object) -> MatchingRule:
    return MatchingRule(source_field="f", target_field="f", match_type=match_type, **kwargs)


def test_nulls() -> None:
    assert compare(NULL, NULL) is True
    assert compare(NULL, value_of("a")) is False
    assert compare(value_of("a"), NULL, _rule(MatchType.FUZZY)) is False


def test_exact_compares_string_forms() -> None:
    assert compare(value_of("100"), value_of(100)) is True
    assert compare(value_of("ABC"), value_of("abc")) is False
    assert compare(value_of(True), value_of("true"), _rule(MatchType.EXACT)) is True


def test_levenshtein_kitten_sitting() -> None:
    assert levenshtein_distance("kitten", "sitting") == 3
    assert similarity("kitten", "sitting") == pytest.approx(0.57, abs=0.01)


def test_fuzzy_threshold_defaults_from_settings() -> None:
    comparator = FieldComparator(ReconcileSettings(default_fuzzy_threshold=0.5))
    rule = _rule(MatchType.FUZZY)

    assert comparator.compare(value_of("kitten"), value_of("sitting"), rule) is True
    assert compare(value_of("kitten"), value_of("sitting"), rule) is False
    assert compare(value_of("Acme Corp"), value_of("ACME Corp."), rule) is True


def test_range_with_tolerance() -> None:
    rule = _rule(MatchType.RANGE, tolerance=0.5)

    assert compare(value_of(100.00), value_of(100.30), rule) is True
    assert compare(value_of(100.30), value_of(100.00), rule) is True
    assert compare(value_of(100.00), value_of(101.00), rule) is False
    assert compare(value_of("$100.20"), value_of("100"), rule) is True


def test_range_without_numbers_is_a_mismatch() -> None:
    rule = _rule(MatchType.RANGE, tolerance=10.0)

    assert compare(value_of("abc"), value_of("100"), rule) is False


def test_range_default_tolerance_is_exact() -> None:
    rule = _rule(MatchType.RANGE)

    assert compare(value_of("10.0"), value_of(10), rule) is True
    assert compare(value_of(10.01), value_of(10), rule) is False


@pytest.mark.parametrize(
    ("match_type", "left", "right"),
    [
        (MatchType.CONTAINS, "Invoice 42", "invoice"),
        (MatchType.CONTAINS, "inv", "INVOICE 42"),
        (MatchType.STARTS_WITH, "ACME", "acme corporation"),
        (MatchType.ENDS_WITH, "corporation", "Acme CORPORATION"),
    ],
)
def test_substring_rules_are_bidirectional(match_type: MatchType, left: str, right: str) -> None:
    rule = _rule(match_type)

    assert compare(value_of(left), value_of(right), rule) is True
    assert compare(value_of(right), value_of(left), rule) is True


def test_substring_rule_mismatch() -> None:
    assert compare(value_of("alpha"), value_of("beta"), _rule(MatchType.CONTAINS)) is False


@given(st.text(max_size=20), st.text(max_size=20))
def test_exact_and_similarity_are_symmetric(left: str, right: str) -> None:
    assert compare(value_of(left), value_of(right)) == compare(value_of(right), value_of(left))
    assert similarity(left, right) == similarity(right, left)
    assert 0.0 <= similarity(left, right) <= 1.0


@given(st.text(max_size=20))
def test_similarity_of_identical_strings_is_one(text: str) -> None:
    assert similarity(text, text) == 1.0
