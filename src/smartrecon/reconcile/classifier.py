"""Turn index differences and field comparisons into exception records."""

from __future__ import annotations

from dataclasses import dataclass, field

from smartrecon.reconcile.comparator import FieldComparator
from smartrecon.reconcile.indexer import RecordIndex
from smartrecon.reconcile.models import ExceptionRecord, ExceptionSeverity, ExceptionType
from smartrecon.reconcile.rules import RuleSet
from smartrecon.reconcile.values import Record, display


@dataclass(slots=True)
class Classification:
    matched: int = 0
    exceptions: list[ExceptionRecord] = field(default_factory=list)


def _unpaired(
    type_: ExceptionType, description: str, record: Record, *, source: bool
) -> ExceptionRecord:
    return ExceptionRecord(
        type=type_,
        severity=ExceptionSeverity.HIGH,
        description=description,
        source_record=record.to_dict() if source else None,
        target_record=None if source else record.to_dict(),
    )


class ExceptionClassifier:
    """Classify two keyed indices against a :class:`RuleSet`.

    Records sharing a key are paired positionally, so the i-th source record
    is compared with the i-th target record in parse order.
    """

    def __init__(self, comparator: FieldComparator | None = None) -> None:
        self.comparator = comparator or FieldComparator()

    def classify(
        self,
        source_index: RecordIndex,
        target_index: RecordIndex,
        rule_set: RuleSet,
    ) -> Classification:
        result = Classification()

        for key, source_records in source_index.items():
            target_records = target_index.get(key)
            if target_records is None:
                for record in source_records:
                    result.exceptions.append(
                        _unpaired(
                            ExceptionType.MISSING_TARGET,
                            "No matching record found in target",
                            record,
                            source=True,
                        )
                    )
                continue

            for position, source_record in enumerate(source_records):
                if position >= len(target_records):
                    result.exceptions.append(
                        _unpaired(
                            ExceptionType.DUPLICATE,
                            "Duplicate key in source with no matching target record",
                            source_record,
                            source=True,
                        )
                    )
                    continue
                field_exceptions = self.compare_records(
                    source_record, target_records[position], rule_set
                )
                if field_exceptions:
                    result.exceptions.extend(field_exceptions)
                else:
                    result.matched += 1

        for key, target_records in target_index.items():
            source_records = source_index.get(key)
            if source_records is None:
                for record in target_records:
                    result.exceptions.append(
                        _unpaired(
                            ExceptionType.MISSING_SOURCE,
                            "No matching record found in source",
                            record,
                            source=False,
                        )
                    )
                continue
            for record in target_records[len(source_records):]:
                result.exceptions.append(
                    _unpaired(
                        ExceptionType.DUPLICATE,
                        "Duplicate key in target with no matching source record",
                        record,
                        source=False,
                    )
                )

        return result

    def compare_records(
        self, source: Record, target: Record, rule_set: RuleSet
    ) -> list[ExceptionRecord]:
        """Compare one paired record field by field."""

        exceptions: list[ExceptionRecord] = []
        for mapping in rule_set.field_mappings:
            source_value = source.value(mapping.source_field)
            target_value = target.value(mapping.target_field)

            if mapping.is_key and (source_value.is_null or target_value.is_null):
                exceptions.append(
                    ExceptionRecord(
                        type=(
                            ExceptionType.MISSING_SOURCE
                            if source_value.is_null
                            else ExceptionType.MISSING_TARGET
                        ),
                        severity=ExceptionSeverity.CRITICAL,
                        description=f"Key field '{mapping.source_field}' is null",
                        field_name=mapping.source_field,
                        source_value=display(source_value),
                        target_value=display(target_value),
                        source_record=source.to_dict(),
                        target_record=target.to_dict(),
                    )
                )
                continue

            rule = rule_set.rule_for(mapping.source_field)
            if self.comparator.compare(source_value, target_value, rule):
                continue
            exceptions.append(
                ExceptionRecord(
                    type=ExceptionType.VALUE_MISMATCH,
                    severity=(
                        ExceptionSeverity.CRITICAL
                        if mapping.is_key
                        else ExceptionSeverity.MEDIUM
                    ),
                    description=f"Value mismatch for field {mapping.source_field}",
                    field_name=mapping.source_field,
                    source_value=display(source_value),
                    target_value=display(target_value),
                    source_record=source.to_dict(),
                    target_record=target.to_dict(),
                )
            )
        return exceptions


__all__ = ["Classification", "ExceptionClassifier"]
