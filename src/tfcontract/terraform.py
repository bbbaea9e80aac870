"""Driver for the Terraform CLI: init, validate and plan.

The driver never applies changes. It runs ``init`` in a module directory and
then either ``validate`` (no variables) or ``plan`` (variables from the
invocation spec, optional plan output file). Failures whose output matches a
known-transient pattern are retried with exponential backoff; anything else is
fatal for that module only.
"""

from __future__ import annotations

import json
import os
import re
import subprocess
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from tfcontract.errors import ToolDeadline, ToolError, ToolFatal, ToolRetryable
from tfcontract.logging import get_logger
from tfcontract.models import ModuleInvocationSpec, Verdict

logger = get_logger(__name__)

_TRANSIENT_PLUGIN = "Failed to retrieve plugin due to transient network error."

# Same taxonomy terratest ships as its default retryable errors.
DEFAULT_RETRYABLE_ERRORS: dict[str, str] = {
    r".*read: connection reset by peer.*": "Failed to reach helm charts repository.",
    r".*transport is closing.*": "Failed to reach Kubernetes API.",
    r".*unable to verify signature.*": _TRANSIENT_PLUGIN,
    r".*unable to verify checksum.*": _TRANSIENT_PLUGIN,
    r".*no provider exists with the given name.*": _TRANSIENT_PLUGIN,
    r".*registry service is unreachable.*": _TRANSIENT_PLUGIN,
    r".*Error installing provider.*": _TRANSIENT_PLUGIN,
    r".*Failed to query available provider packages.*": _TRANSIENT_PLUGIN,
    r".*timeout while waiting for plugin to start.*": _TRANSIENT_PLUGIN,
    r".*timed out waiting for server handshake.*": _TRANSIENT_PLUGIN,
    r"could not query provider registry for": _TRANSIENT_PLUGIN,
    r".*Provider produced inconsistent result after apply.*": (
        "Provider eventual consistency error."
    ),
}

ALLOWED_SUBCOMMANDS = frozenset({"init", "validate", "plan"})

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


def classify(output: str, retryable_errors: Mapping[str, str]) -> str | None:
    """Return the description of the first transient pattern found in output."""
    for pattern, description in retryable_errors.items():
        if re.search(pattern, output):
            return description
    return None


def format_var_value(value: Any, nested: bool = False) -> str:
    """Render a variable binding the way ``-var`` expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        items = ", ".join(
            f"{json.dumps(str(key))} = {format_var_value(item, nested=True)}"
            for key, item in value.items()
        )
        return "{" + items + "}"
    if isinstance(value, (list, tuple, set, frozenset)):
        ordered = sorted(value) if isinstance(value, (set, frozenset)) else value
        return "[" + ", ".join(format_var_value(item, nested=True) for item in ordered) + "]"
    if nested:
        return json.dumps(str(value))
    return str(value)


def var_args(variables: Mapping[str, Any]) -> list[str]:
    """Build ``-var`` flags in binding order."""
    args: list[str] = []
    for name, value in variables.items():
        args.extend(["-var", f"{name}={format_var_value(value)}"])
    return args


class TerraformDriver:
    """Runs Terraform subcommands with transient-error retries.

    Configuration:
        binary: Terraform executable name or path.
        retryable_errors: Mapping of regex to description for transient errors.
        max_retries: Retries after the first attempt of each command.
        backoff_seconds: Initial delay; doubles per retry up to max_backoff_seconds.
        timeout_seconds: Per-process deadline; expiry kills the child.
    """

    def __init__(
        self,
        binary: str = "terraform",
        *,
        retryable_errors: Mapping[str, str] | None = None,
        max_retries: int = 3,
        backoff_seconds: float = 5.0,
        max_backoff_seconds: float = 30.0,
        timeout_seconds: float = 600.0,
        runner: Runner = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.binary = binary
        self.retryable_errors = dict(
            DEFAULT_RETRYABLE_ERRORS if retryable_errors is None else retryable_errors
        )
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.timeout_seconds = timeout_seconds
        self.runner = runner
        self.sleep = sleep

    def init(self, spec: ModuleInvocationSpec) -> int:
        """Initialise the module without touching any backend. Returns attempts."""
        return self._execute(spec, ["init", "-input=false", "-backend=false", "-no-color"])

    def validate(self, spec: ModuleInvocationSpec) -> int:
        """Run ``terraform validate``; it takes no variable bindings."""
        if spec.operation != "validate":
            raise ValueError(f"{spec.invocation_id} is not a validate invocation")
        return self._execute(spec, ["validate", "-no-color"])

    def plan(self, spec: ModuleInvocationSpec) -> int:
        """Run ``terraform plan`` with the invocation's variables and output file."""
        if spec.operation != "plan":
            raise ValueError(f"{spec.invocation_id} is not a plan invocation")
        args = ["plan", "-input=false", "-lock=false", "-no-color", *var_args(spec.variables)]
        if spec.plan_file is not None:
            try:
                spec.plan_file.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ToolFatal(
                    f"cannot create plan output directory {spec.plan_file.parent}: {exc}"
                ) from exc
            args.append(f"-out={spec.plan_file}")
        return self._execute(spec, args)

    def run(
        self,
        spec: ModuleInvocationSpec,
        cancel: threading.Event | None = None,
    ) -> Verdict:
        """Drive one invocation from init to a verdict."""
        start = time.monotonic()
        attempts = 0
        state = "init"
        try:
            if not spec.directory.is_dir():
                raise ToolFatal(f"module directory not found: {spec.directory}")
            if cancel is not None and cancel.is_set():
                return self._verdict(
                    spec, "cancelled", "cancelled before init", "cancelled", 0, start
                )
            attempts += self.init(spec)

            state = spec.operation
            logger.debug("terraform_ready", invocation_id=spec.invocation_id)
            if cancel is not None and cancel.is_set():
                return self._verdict(
                    spec, "cancelled", f"cancelled before {state}", "cancelled", attempts, start
                )
            if spec.operation == "validate":
                attempts += self.validate(spec)
            else:
                attempts += self.plan(spec)
        except ToolDeadline as exc:
            attempts += exc.attempts
            return self._failed(spec, state, exc, "deadline", attempts, start)
        except ToolRetryable as exc:
            attempts += exc.attempts
            return self._failed(spec, state, exc, "tool_retryable", attempts, start)
        except ToolFatal as exc:
            attempts += exc.attempts if exc.command else 0
            return self._failed(spec, state, exc, "tool_fatal", attempts, start)

        logger.info("terraform_done", invocation_id=spec.invocation_id, attempts=attempts)
        return self._verdict(spec, "pass", "", None, attempts, start)

    def run_all(
        self,
        specs: Sequence[ModuleInvocationSpec],
        max_workers: int | None = None,
        cancel: threading.Event | None = None,
    ) -> list[Verdict]:
        """Run every spec; specs sharing a directory run one after another."""
        by_directory: dict[Path, list[int]] = {}
        for index, spec in enumerate(specs):
            by_directory.setdefault(spec.directory.resolve(), []).append(index)

        def run_group(indexes: list[int]) -> list[tuple[int, Verdict]]:
            return [(index, self.run(specs[index], cancel=cancel)) for index in indexes]

        results: list[Verdict | None] = [None] * len(specs)
        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tfcontract-terraform"
        ) as pool:
            for group in pool.map(run_group, by_directory.values()):
                for index, verdict in group:
                    results[index] = verdict
        return [verdict for verdict in results if verdict is not None]

    def _command(self, args: Sequence[str]) -> list[str]:
        if not args or args[0] not in ALLOWED_SUBCOMMANDS:
            raise ValueError(f"unsupported terraform subcommand: {args[0] if args else ''}")
        return [self.binary, *args]

    def _execute(self, spec: ModuleInvocationSpec, args: Sequence[str]) -> int:
        command = self._command(args)
        env = dict(os.environ)
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"

        attempt = 0
        while True:
            attempt += 1
            try:
                result = self.runner(
                    command,
                    cwd=str(spec.directory),
                    env=env,
                    check=False,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                )
            except subprocess.TimeoutExpired as exc:
                raise ToolDeadline(
                    f"{args[0]} exceeded {self.timeout_seconds}s deadline and was killed",
                    command=command,
                    attempts=attempt,
                ) from exc
            except FileNotFoundError as exc:
                raise ToolFatal(
                    f"terraform binary not found: {self.binary}",
                    command=command,
                    attempts=attempt,
                ) from exc
            except OSError as exc:
                raise ToolFatal(
                    f"cannot execute terraform binary {self.binary}: {exc}",
                    command=command,
                    attempts=attempt,
                ) from exc

            if result.returncode == 0:
                return attempt

            output = "\n".join(part for part in (result.stdout, result.stderr) if part)
            reason = classify(output, self.retryable_errors)
            if reason is None:
                logger.error(
                    "terraform_command_failed",
                    invocation_id=spec.invocation_id,
                    subcommand=args[0],
                    exit_code=result.returncode,
                )
                raise ToolFatal(
                    f"{args[0]} failed with exit code {result.returncode}: "
                    f"{_tail(result.stderr or result.stdout)}",
                    command=command,
                    exit_code=result.returncode,
                    output=output,
                    attempts=attempt,
                )
            if attempt > self.max_retries:
                raise ToolRetryable(
                    f"{args[0]} still failing after {attempt} attempts: {reason}",
                    command=command,
                    exit_code=result.returncode,
                    output=output,
                    attempts=attempt,
                )

            delay = min(self.backoff_seconds * 2 ** (attempt - 1), self.max_backoff_seconds)
            logger.warning(
                "terraform_retry",
                invocation_id=spec.invocation_id,
                subcommand=args[0],
                attempt=attempt,
                reason=reason,
                delay_seconds=delay,
            )
            self.sleep(delay)

    def _failed(
        self,
        spec: ModuleInvocationSpec,
        state: str,
        exc: ToolError,
        error_kind: str,
        attempts: int,
        start: float,
    ) -> Verdict:
        logger.error(
            "terraform_failed",
            invocation_id=spec.invocation_id,
            state=state,
            error_kind=error_kind,
            error=str(exc),
        )
        return self._verdict(spec, "fail", f"{state}: {exc}", error_kind, attempts, start)

    @staticmethod
    def _verdict(
        spec: ModuleInvocationSpec,
        status: str,
        message: str,
        error_kind: str | None,
        attempts: int,
        start: float,
    ) -> Verdict:
        return Verdict(
            subject_id=spec.invocation_id,
            module=spec.module,
            kind="invocation",
            status=status,  # type: ignore[arg-type]
            message=message,
            error_kind=error_kind,  # type: ignore[arg-type]
            attempts=attempts,
            duration_seconds=round(time.monotonic() - start, 4),
        )


def _tail(text: str, limit: int = 400) -> str:
    stripped = (text or "").strip()
    if len(stripped) <= limit:
        return stripped
    return "..." + stripped[-limit:]
