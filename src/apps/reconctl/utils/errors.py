"""Exit codes and user-facing errors for the ``reconctl`` CLI."""

from __future__ import annotations

from enum import IntEnum

from smartrecon.errors import (
    AccessDeniedError,
    ConfigurationError,
    InvalidRuleSetError,
    NotFoundError,
    ParseError,
    SmartReconError,
)


class ExitCode(IntEnum):
    """Standardised exit codes for the reconctl CLI."""

    SUCCESS = 0
    VALIDATION = 1
    IO = 2
    CONFIG = 3
    RUNTIME = 5


class ReconctlError(Exception):
    """Base for predictable CLI errors that surface to users."""

    exit_code: ExitCode = ExitCode.RUNTIME
    label = "Error"

    def __init__(
        self, message: str, *, exit_code: ExitCode | int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is None:
            exit_code = type(self).exit_code
        self.exit_code = ExitCode(exit_code)

    def __str__(self) -> str:  # pragma: no cover - exercised through Typer.
        return self.message

    @property
    def heading(self) -> str:
        return type(self).label


class ReconctlValidationError(ReconctlError):
    """Raised when rule sets, definitions or arguments are rejected."""

    exit_code = ExitCode.VALIDATION
    label = "Validation error"


class ReconctlIOError(ReconctlError):
    """Raised when input files cannot be read or reports written."""

    exit_code = ExitCode.IO
    label = "I/O error"


class ReconctlConfigError(ReconctlError):
    exit_code = ExitCode.CONFIG
    label = "Configuration error"


class ReconctlRuntimeError(ReconctlError):
    exit_code = ExitCode.RUNTIME
    label = "Runtime error"


_BY_CODE: dict[str, type[ReconctlError]] = {
    ParseError.default_code: ReconctlIOError,
    InvalidRuleSetError.default_code: ReconctlValidationError,
    ConfigurationError.default_code: ReconctlConfigError,
    AccessDeniedError.default_code: ReconctlValidationError,
    NotFoundError.default_code: ReconctlValidationError,
}


def error_for_code(code: str | None, message: str) -> ReconctlError:
    """Translate a library error code into the matching CLI error."""

    return _BY_CODE.get(code or "", ReconctlRuntimeError)(message)


def translate(exc: SmartReconError) -> ReconctlError:
    return error_for_code(exc.code, exc.message)


__all__ = [
    "ExitCode",
    "ReconctlConfigError",
    "ReconctlError",
    "ReconctlIOError",
    "ReconctlRuntimeError",
    "ReconctlValidationError",
    "error_for_code",
    "translate",
]
