"""Harness settings resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

ENV_PREFIX = "TFCONTRACT_"


@dataclass(frozen=True)
class HarnessSettings:
    """Runtime configuration shared by the CLI and the pytest plugin.

    Configuration via environment:
        TFCONTRACT_INFRA_ROOT: Infrastructure root holding modules/ (default: ..)
        TFCONTRACT_CATALOG: Policy catalog YAML (default: bundled catalog)
        TFCONTRACT_TERRAFORM_BIN: Configuration engine binary (default: terraform)
        TFCONTRACT_LOG_LEVEL: Log level (default: WARNING)
        TFCONTRACT_TOOL_TIMEOUT: Per-process deadline in seconds (default: 600)
        TFCONTRACT_MAX_RETRIES: Retries for transient engine errors (default: 3)
        TFCONTRACT_RETRY_BACKOFF: Initial backoff in seconds (default: 5)
        TFCONTRACT_WORKERS: Worker threads, 0 for the executor default (default: 0)
        TFCONTRACT_PLAN_DIR: Directory for plan output files (default: module dir)
    """

    infra_root: Path = Path("..")
    catalog_path: Path | None = None
    terraform_bin: str = "terraform"
    log_level: str = "WARNING"
    tool_timeout_seconds: float = 600.0
    max_retries: int = 3
    retry_backoff_seconds: float = 5.0
    workers: int = 0
    plan_dir: Path | None = None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> HarnessSettings:
        """Build settings from TFCONTRACT_* variables."""
        env = dict(os.environ if environ is None else environ)
        defaults = cls()
        catalog = env.get(f"{ENV_PREFIX}CATALOG", "").strip()
        plan_dir = env.get(f"{ENV_PREFIX}PLAN_DIR", "").strip()
        return cls(
            infra_root=Path(env.get(f"{ENV_PREFIX}INFRA_ROOT", "").strip() or defaults.infra_root),
            catalog_path=Path(catalog) if catalog else None,
            terraform_bin=env.get(f"{ENV_PREFIX}TERRAFORM_BIN", "").strip()
            or defaults.terraform_bin,
            log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", "").strip() or defaults.log_level,
            tool_timeout_seconds=_positive_float(
                env, "TOOL_TIMEOUT", defaults.tool_timeout_seconds
            ),
            max_retries=_non_negative_int(env, "MAX_RETRIES", defaults.max_retries),
            retry_backoff_seconds=_non_negative_float(
                env, "RETRY_BACKOFF", defaults.retry_backoff_seconds
            ),
            workers=_non_negative_int(env, "WORKERS", defaults.workers),
            plan_dir=Path(plan_dir) if plan_dir else None,
        )

    def with_overrides(self, **overrides: Any) -> HarnessSettings:
        """Return a copy with every non-None override applied."""
        applied = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **applied)

    @property
    def max_workers(self) -> int | None:
        return self.workers or None


def _raw(env: dict[str, str], name: str) -> str:
    return env.get(f"{ENV_PREFIX}{name}", "").strip()


def _positive_float(env: dict[str, str], name: str, default: float) -> float:
    raw = _raw(env, name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be positive, got {raw!r}")
    return value


def _non_negative_float(env: dict[str, str], name: str, default: float) -> float:
    raw = _raw(env, name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative, got {raw!r}")
    return value


def _non_negative_int(env: dict[str, str], name: str, default: int) -> int:
    raw = _raw(env, name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative, got {raw!r}")
    return value
