"""Run options and plan-file loading for the verification orchestrator."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from omegaconf import OmegaConf
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_BOUND = 30
DEFAULT_VERIFY_COMMAND = ("stoke_debug_verify",)
DEFAULT_SANDBOX_COMMAND = ("stoke_debug_sandbox",)


class VerifyOptions(BaseModel):
    """Caller-level tunables threaded into the resolver."""

    model_config = ConfigDict(frozen=True)

    target_bound: int = Field(DEFAULT_BOUND, ge=0)
    rewrite_bound: int = Field(DEFAULT_BOUND, ge=0)
    shadow_registers: bool = False


class PlanConfig(BaseModel):
    """Schema for the optional orchestrator plan file."""

    root: Path | None = None
    target_bound: int | None = Field(None, ge=0)
    rewrite_bound: int | None = Field(None, ge=0)
    shadow_registers: bool | None = None
    verify_command: list[str] = Field(default_factory=lambda: list(DEFAULT_VERIFY_COMMAND), min_length=1)
    sandbox_command: list[str] = Field(default_factory=lambda: list(DEFAULT_SANDBOX_COMMAND), min_length=1)
    job_timeout_s: float | None = Field(None, gt=0)
    max_parallel: int | None = Field(None, ge=1)
    env_file: Path | None = None


class ConfigFormatError(ValueError):
    """Raised when a configuration file cannot be interpreted as a mapping."""


class UsageError(ValueError):
    """Raised for malformed invocations (unknown scope, bad option values)."""


def load_plan(path: Path) -> PlanConfig:
    resolved = path.expanduser().resolve()
    payload = _load_mapping(resolved)
    try:
        plan = PlanConfig(**payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid plan file: {resolved}") from exc
    base_dir = resolved.parent
    if plan.root is not None:
        plan.root = _resolve_relative(plan.root, base_dir)
    if plan.env_file is not None:
        plan.env_file = _resolve_relative(plan.env_file, base_dir)
    return plan


def build_options(
    plan: PlanConfig | None = None,
    *,
    target_bound: int | None = None,
    rewrite_bound: int | None = None,
    shadow_registers: bool = False,
) -> VerifyOptions:
    """Merge plan values with CLI overrides (explicit wins)."""
    values: dict[str, Any] = {}
    if plan is not None:
        for key in ("target_bound", "rewrite_bound", "shadow_registers"):
            value = getattr(plan, key)
            if value is not None:
                values[key] = value
    if target_bound is not None:
        values["target_bound"] = target_bound
    if rewrite_bound is not None:
        values["rewrite_bound"] = rewrite_bound
    if shadow_registers:
        values["shadow_registers"] = True
    try:
        return VerifyOptions(**values)
    except ValidationError as exc:
        raise UsageError(f"Invalid verification options: {values}") from exc


def _resolve_relative(path: Path, base_dir: Path) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return candidate.resolve()


def _load_mapping(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    if path.suffix not in {".yaml", ".yml", ".json"}:
        raise ValueError(f"Unsupported config format: {path} (expected .yaml/.yml/.json)")
    try:
        data = OmegaConf.to_container(OmegaConf.load(path), resolve=True)
    except Exception as exc:  # pragma: no cover - OmegaConf error types vary
        raise ConfigFormatError(f"Failed to load config: {path}") from exc
    if not isinstance(data, Mapping):
        raise ConfigFormatError(f"Config must be a mapping at top level: {path}")
    return data


__all__ = [
    "ConfigFormatError",
    "DEFAULT_BOUND",
    "PlanConfig",
    "UsageError",
    "VerifyOptions",
    "build_options",
    "load_plan",
]
