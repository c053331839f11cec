"""Configuration for reconciliation jobs and runners.

Defaults that used to be implicit constants (AI batch sizes, fuzzy threshold,
key separator) live on :class:`ReconcileSettings`, which is handed to the
comparator, executor and runners at construction.  Profiles may override any
field through ``smartrecon.toml`` documents.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older runtimes.
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from smartrecon.errors import ConfigurationError

CONFIG_FILENAME = "smartrecon.toml"
PROFILE_ENV = "SMARTRECON_PROFILE"
PROJECT_ROOT_ENV = "SMARTRECON_PROJECT_ROOT"


class ReconcileSettings(BaseModel):
    """Explicit configuration value passed into the engine."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ai_suggestion_batch_size: int = Field(default=10, gt=0)
    ai_suggestion_max_exceptions: int = Field(default=50, ge=0)
    potential_match_max_unmatched: int = Field(default=200, ge=0)
    default_fuzzy_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    default_tolerance: float = Field(default=0.0, ge=0.0)
    key_separator: str = "|"
    null_key_sentinel: str = "null"
    max_workers: int = Field(default=4, gt=0)
    max_step_attempts: int = Field(default=1, gt=0)
    enable_ai_suggestions: bool = True
    enable_potential_matches: bool = True


def load_settings(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
) -> ReconcileSettings:
    """Load and merge configuration files before validating *profile*.

    Files are read from user config directories, the project root and the
    workspace, in that order; later files deep-merge over earlier ones.  The
    profile falls back to ``SMARTRECON_PROFILE``, then ``default_profile`` and
    finally ``"default"``.  A missing ``"default"`` profile yields the built-in
    defaults.
    """

    merged: Dict[str, Any] = {}
    for path in _iter_config_paths(workspace=workspace, project_root=project_root):
        try:
            document = _load_toml(path)
        except OSError as exc:  # pragma: no cover - filesystem errors are rare.
            raise ConfigurationError(
                f"Unable to read configuration file '{path}': {exc}"
            ) from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigurationError(
                f"Configuration file '{path}' is not valid TOML: {exc}"
            ) from exc
        merged = _deep_merge(merged, document)

    profiles = merged.get("profiles", {})
    if not isinstance(profiles, Mapping):
        raise ConfigurationError("The 'profiles' table must contain mappings of settings")

    selected = _determine_profile_name(merged, profile)
    if selected in profiles:
        raw = profiles[selected]
        if not isinstance(raw, Mapping):
            raise ConfigurationError(
                f"Profile '{selected}' must be a mapping of configuration values"
            )
        data: Mapping[str, Any] = dict(raw)
    elif selected == "default":
        data = {}
    else:
        available = ", ".join(sorted(str(name) for name in profiles)) or "<none>"
        raise ConfigurationError(
            f"Profile '{selected}' was not found. Available profiles: {available}."
        )

    try:
        return ReconcileSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Profile '{selected}' is invalid: {exc}",
            context={"profile": selected},
        ) from exc


def _iter_config_paths(
    *, workspace: Path | None, project_root: Path | None
) -> Iterable[Path]:
    yielded: set[Path] = set()

    candidates: list[Path] = list(_user_config_paths())
    root = _normalise_project_root(project_root)
    candidates.extend((root / CONFIG_FILENAME, root / ".smartrecon" / CONFIG_FILENAME))
    if workspace is not None:
        candidates.append(workspace / CONFIG_FILENAME)

    for path in candidates:
        if path.exists() and path not in yielded:
            yielded.add(path)
            yield path


def _user_config_paths() -> tuple[Path, ...]:
    home = Path(os.path.expanduser("~"))
    xdg_config = os.environ.get("XDG_CONFIG_HOME")

    candidates = []
    if xdg_config:
        candidates.append(Path(xdg_config) / "smartrecon" / CONFIG_FILENAME)
    candidates.append(home / ".config" / "smartrecon" / CONFIG_FILENAME)
    candidates.append(home / CONFIG_FILENAME)
    return tuple(candidates)


def _normalise_project_root(project_root: Path | None) -> Path:
    if project_root is not None:
        return project_root
    env_root = os.environ.get(PROJECT_ROOT_ENV)
    if env_root:
        return Path(env_root)
    return Path.cwd()


def _load_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _deep_merge(base: Dict[str, Any], new: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in new.items():
        if key in merged and isinstance(merged[key], Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _determine_profile_name(config: Mapping[str, Any], override: str | None) -> str:
    if override:
        return override

    env_profile = os.environ.get(PROFILE_ENV)
    if env_profile:
        return env_profile

    default_profile = config.get("default_profile")
    if isinstance(default_profile, str) and default_profile:
        return default_profile

    return "default"


__all__ = ["CONFIG_FILENAME", "ReconcileSettings", "load_settings"]
