"""Rule set schema used by :mod:`smartrecon.reconcile.executor`."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from smartrecon.errors import InvalidRuleSetError


class MatchType(str, Enum):
    EXACT = "EXACT"
    FUZZY = "FUZZY"
    RANGE = "RANGE"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"


class FieldMapping(BaseModel):
    """Correspondence between a source field and a target field."""

    model_config = ConfigDict(frozen=True)

    source_field: str
    target_field: str
    is_key: bool = False
    transform: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    def field_for(self, *, source: bool) -> str:
        return self.source_field if source else self.target_field


class MatchingRule(BaseModel):
    """Per-field comparison strategy and its parameters."""

    model_config = ConfigDict(frozen=True)

    source_field: str
    target_field: str
    match_type: MatchType = MatchType.EXACT
    tolerance: float | None = Field(default=None, ge=0.0)
    fuzzy_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    active: bool = True
    priority: int = 0
    name: str | None = None

    @field_validator("match_type", mode="before")
    @classmethod
    def _normalise_match_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper().replace("-", "_")
        return value


class RuleSet(BaseModel):
    """Field mappings and matching rules for one reconciliation job."""

    model_config = ConfigDict(frozen=True)

    name: str = "default"
    rule_set_id: str | None = None
    description: str | None = None
    field_mappings: tuple[FieldMapping, ...] = ()
    matching_rules: tuple[MatchingRule, ...] = ()

    @property
    def key_mappings(self) -> tuple[FieldMapping, ...]:
        return tuple(mapping for mapping in self.field_mappings if mapping.is_key)

    def require_keys(self) -> tuple[FieldMapping, ...]:
        """Return the key mappings, failing fast when there are none."""

        keys = self.key_mappings
        if not keys:
            raise InvalidRuleSetError(
                "Rule set must have at least one key field",
                context={"rule_set": self.name},
            )
        return keys

    def rule_for(self, source_field: str) -> MatchingRule | None:
        """Return the first active rule declared for *source_field*.

        ``priority`` does not take part in selection.
        """

        for rule in self.matching_rules:
            if rule.active and rule.source_field == source_field:
                return rule
        return None


def build_rule_set(config: Mapping[str, Any] | RuleSet) -> RuleSet:
    """Create a validated :class:`RuleSet` from raw configuration."""

    if isinstance(config, RuleSet):
        rule_set = config
    else:
        try:
            rule_set = RuleSet.model_validate(dict(config))
        except ValidationError as exc:
            raise InvalidRuleSetError(str(exc)) from exc
    if not rule_set.field_mappings:
        raise InvalidRuleSetError(
            "Rule set must define at least one field mapping",
            context={"rule_set": rule_set.name},
        )
    return rule_set


def load_rule_set_config(path: Path) -> Mapping[str, Any]:
    """Load rule set configuration from a JSON or YAML file."""

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidRuleSetError(f"Rule set file '{path}' is not valid YAML: {exc}") from exc
    if isinstance(data, Mapping):
        return data
    if isinstance(data, Sequence) and not isinstance(data, str):
        # A bare list is read as field mappings only.
        return {"name": path.stem, "field_mappings": list(data)}
    raise InvalidRuleSetError(f"Unsupported rule set format in '{path}'")


def load_rule_set(path: Path) -> RuleSet:
    """Load and validate a rule set from *path*."""

    config = dict(load_rule_set_config(path))
    config.setdefault("name", path.stem)
    return build_rule_set(config)


__all__ = [
    "FieldMapping",
    "MatchType",
    "MatchingRule",
    "RuleSet",
    "build_rule_set",
    "load_rule_set",
    "load_rule_set_config",
]
