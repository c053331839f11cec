"""Error taxonomy shared by the reconciliation engine and run lifecycle."""

from __future__ import annotations

from typing import Any, Mapping


class SmartReconError(RuntimeError):
    """Base class for predictable reconciliation failures."""

    default_code = "smartrecon.error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context: dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        return self.message


class InvalidRuleSetError(SmartReconError):
    """Raised when a rule set or stream definition cannot drive a job."""

    default_code = "ruleset.invalid"


class ParseError(SmartReconError):
    """Raised when a parser collaborator cannot turn a file into rows."""

    default_code = "parse.failed"


class ConfigurationError(SmartReconError):
    """Raised when settings or profiles are invalid."""

    default_code = "config.invalid"


class AccessDeniedError(SmartReconError):
    """Raised when an organization reaches for another tenant's stream."""

    default_code = "access.denied"


class NotFoundError(SmartReconError):
    """Raised when an entity id does not resolve."""

    default_code = "not_found"

    def __init__(self, entity: str, identifier: Any) -> None:
        super().__init__(
            f"{entity} not found: {identifier}",
            context={"entity": entity, "id": identifier},
        )
        self.entity = entity
        self.identifier = identifier


class InvalidStateTransitionError(SmartReconError):
    """Raised when a lifecycle transition violates its precondition."""

    default_code = "state.invalid_transition"

    def __init__(self, entity: str, from_state: Any, to_state: Any) -> None:
        from_label = getattr(from_state, "value", from_state)
        to_label = getattr(to_state, "value", to_state)
        super().__init__(
            f"Invalid state transition for {entity}: {from_label} -> {to_label}",
            context={"entity": entity, "from": from_label, "to": to_label},
        )
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state


class RetryableStepError(SmartReconError):
    """Raised by step executors when the step may succeed on another attempt."""

    default_code = "step.retryable"


__all__ = [
    "AccessDeniedError",
    "ConfigurationError",
    "InvalidRuleSetError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "ParseError",
    "RetryableStepError",
    "SmartReconError",
]
