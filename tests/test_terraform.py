"""Terraform driver tests with a fake process runner."""

from __future__ import annotations

import inspect
import subprocess
import threading
import time
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from tfcontract.invocations import build_invocations
from tfcontract.models import ModuleInvocationSpec
from tfcontract.terraform import (
    DEFAULT_RETRYABLE_ERRORS,
    TerraformDriver,
    classify,
    format_var_value,
    var_args,
)

TRANSIENT = "Error: Failed to query available provider packages\nregistry.terraform.io timed out"


class FakeRunner:
    """Records commands and replays scripted results per subcommand."""

    def __init__(self, script: dict[str, list[tuple[int, str]]] | None = None) -> None:
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def __call__(self, command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        with self._lock:
            self.calls.append({"command": command, **kwargs})
            queued = self.script.get(command[1], [])
            returncode, stderr = queued.pop(0) if queued else (0, "")
        return subprocess.CompletedProcess(command, returncode, stdout="", stderr=stderr)

    def subcommands(self) -> list[str]:
        return [call["command"][1] for call in self.calls]


def _driver(runner: Any, **kwargs: Any) -> tuple[TerraformDriver, list[float]]:
    sleeps: list[float] = []
    driver = TerraformDriver(
        "terraform",
        runner=runner,
        sleep=sleeps.append,
        backoff_seconds=1.0,
        max_backoff_seconds=3.0,
        **kwargs,
    )
    return driver, sleeps


def _validate_spec(directory: Path) -> ModuleInvocationSpec:
    return ModuleInvocationSpec(module="eks", directory=directory, operation="validate")


def test_validate_runs_init_then_validate(infra_root: Path) -> None:
    runner = FakeRunner()
    driver, _ = _driver(runner)

    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"))

    assert verdict.passed
    assert verdict.subject_id == "validate/eks"
    assert runner.subcommands() == ["init", "validate"]
    init_call = runner.calls[0]
    assert init_call["command"] == [
        "terraform",
        "init",
        "-input=false",
        "-backend=false",
        "-no-color",
    ]
    assert init_call["cwd"] == str(infra_root / "modules" / "eks")
    assert init_call["env"]["TF_IN_AUTOMATION"] == "1"
    assert init_call["timeout"] == 600.0
    assert not any(arg == "-var" for arg in runner.calls[1]["command"])


def test_transient_init_failure_is_retried(infra_root: Path) -> None:
    runner = FakeRunner({"init": [(1, TRANSIENT)]})
    driver, sleeps = _driver(runner)

    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"))

    assert verdict.passed
    assert verdict.status == "pass"
    assert verdict.attempts == 3
    assert runner.subcommands() == ["init", "init", "validate"]
    assert sleeps == [1.0]


def test_backoff_doubles_and_is_capped(infra_root: Path) -> None:
    runner = FakeRunner({"init": [(1, TRANSIENT)] * 3})
    driver, sleeps = _driver(runner)

    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"))

    assert verdict.passed
    assert sleeps == [1.0, 2.0, 3.0]


def test_retries_exhausted_is_a_retryable_failure(infra_root: Path) -> None:
    runner = FakeRunner({"init": [(1, TRANSIENT)] * 10})
    driver, sleeps = _driver(runner, max_retries=2)

    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"))

    assert verdict.status == "fail"
    assert verdict.error_kind == "tool_retryable"
    assert verdict.attempts == 3
    assert len(sleeps) == 2
    assert "validate" not in runner.subcommands()


def test_unclassified_failure_is_fatal_without_retry(infra_root: Path) -> None:
    runner = FakeRunner({"validate": [(1, "Error: Unsupported argument")]})
    driver, sleeps = _driver(runner)

    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"))

    assert verdict.status == "fail"
    assert verdict.error_kind == "tool_fatal"
    assert "Unsupported argument" in verdict.message
    assert verdict.message.startswith("validate:")
    assert sleeps == []
    assert runner.subcommands() == ["init", "validate"]


def test_deadline_expiry_is_fatal(infra_root: Path) -> None:
    def slow_runner(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    driver, _ = _driver(slow_runner, timeout_seconds=0.5)
    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"))

    assert verdict.status == "fail"
    assert verdict.error_kind == "deadline"
    assert "0.5s deadline" in verdict.message


def test_missing_binary_is_fatal(infra_root: Path) -> None:
    def missing_runner(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(command[0])

    driver, _ = _driver(missing_runner)
    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"))

    assert verdict.error_kind == "tool_fatal"
    assert "binary not found" in verdict.message


def test_missing_module_directory_is_fatal(tmp_path: Path) -> None:
    runner = FakeRunner()
    driver, _ = _driver(runner)

    verdict = driver.run(_validate_spec(tmp_path / "modules" / "eks"))

    assert verdict.error_kind == "tool_fatal"
    assert verdict.attempts == 0
    assert runner.calls == []


def test_plan_passes_variables_and_plan_file(infra_root: Path, tmp_path: Path) -> None:
    runner = FakeRunner()
    driver, _ = _driver(runner)
    spec = build_invocations(infra_root, plan_dir=tmp_path / "plans", modules=["vpc"])[0]

    verdict = driver.run(spec)

    assert verdict.passed
    assert verdict.subject_id == "plan/vpc"
    plan_command = runner.calls[1]["command"]
    assert plan_command[:5] == ["terraform", "plan", "-input=false", "-lock=false", "-no-color"]
    assert "availability_zones=[\"us-east-1a\", \"us-east-1b\", \"us-east-1c\"]" in plan_command
    assert "tags={\"Test\" = \"true\"}" in plan_command
    assert "enable_vpc_endpoints=false" in plan_command
    assert "max_workspaces=100" in plan_command
    assert plan_command[-1] == f"-out={tmp_path / 'plans' / 'vpc-plan.out'}"
    assert (tmp_path / "plans").is_dir()


def test_validate_spec_rejects_variables(infra_root: Path) -> None:
    with pytest.raises(ValidationError, match="variable bindings"):
        ModuleInvocationSpec(
            module="eks",
            directory=infra_root / "modules" / "eks",
            operation="validate",
            variables={"region": "us-east-1"},
        )


def test_validate_spec_rejects_plan_file(infra_root: Path) -> None:
    with pytest.raises(ValidationError, match="plan output file"):
        ModuleInvocationSpec(
            module="eks",
            directory=infra_root / "modules" / "eks",
            operation="validate",
            plan_file=infra_root / "eks.out",
        )


def test_driver_has_no_apply_path() -> None:
    driver, _ = _driver(FakeRunner())
    assert not hasattr(driver, "apply")
    assert not hasattr(driver, "destroy")
    with pytest.raises(ValueError, match="unsupported terraform subcommand"):
        driver._command(["apply", "-auto-approve"])
    source = inspect.getsource(TerraformDriver)
    assert '"apply"' not in source


def test_wrong_operation_is_rejected(infra_root: Path) -> None:
    driver, _ = _driver(FakeRunner())
    with pytest.raises(ValueError, match="not a plan invocation"):
        driver.plan(_validate_spec(infra_root / "modules" / "eks"))


def test_run_all_reports_every_module_in_input_order(infra_root: Path) -> None:
    runner = FakeRunner({"validate": [(1, "Error: Invalid reference")]})
    driver, _ = _driver(runner)
    specs = build_invocations(infra_root, plan_dir=infra_root / "plans")

    verdicts = driver.run_all(specs, max_workers=4)

    assert [verdict.subject_id for verdict in verdicts] == [spec.invocation_id for spec in specs]
    failed = [verdict for verdict in verdicts if not verdict.passed]
    assert len(failed) == 1
    assert failed[0].error_kind == "tool_fatal"


def test_run_all_serialises_specs_sharing_a_directory(infra_root: Path) -> None:
    active: dict[str, int] = {}
    overlaps: list[str] = []
    lock = threading.Lock()

    def tracking_runner(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        cwd = kwargs["cwd"]
        with lock:
            active[cwd] = active.get(cwd, 0) + 1
            if active[cwd] > 1:
                overlaps.append(cwd)
        time.sleep(0.01)
        with lock:
            active[cwd] -= 1
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    driver, _ = _driver(tracking_runner)
    verdicts = driver.run_all(build_invocations(infra_root, plan_dir=infra_root / "plans"))

    assert all(verdict.passed for verdict in verdicts)
    assert overlaps == []


def test_cancelled_invocation_is_neutral(infra_root: Path) -> None:
    runner = FakeRunner()
    driver, _ = _driver(runner)
    cancel = threading.Event()
    cancel.set()

    verdict = driver.run(_validate_spec(infra_root / "modules" / "eks"), cancel=cancel)

    assert verdict.status == "cancelled"
    assert runner.calls == []


def test_classify_uses_injected_taxonomy() -> None:
    assert classify(TRANSIENT, DEFAULT_RETRYABLE_ERRORS) is not None
    assert classify("Error: Unsupported argument", DEFAULT_RETRYABLE_ERRORS) is None
    custom = {r"rate limited": "Registry rate limit."}
    assert classify("429 rate limited", custom) == "Registry rate limit."
    assert classify(TRANSIENT, custom) is None


def test_format_var_value_renders_hcl_literals() -> None:
    assert format_var_value("us-east-1") == "us-east-1"
    assert format_var_value(True) == "true"
    assert format_var_value(3) == "3"
    assert format_var_value(["a", 1]) == '["a", 1]'
    assert format_var_value({"k": ["v"]}) == '{"k" = ["v"]}'
    assert var_args({"region": "eu-west-1"}) == ["-var", "region=eu-west-1"]


def test_unexecutable_binary_fails_each_module(infra_root: Path) -> None:
    def denied_runner(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise PermissionError(13, "Permission denied", command[0])

    driver, _ = _driver(denied_runner)
    specs = [
        _validate_spec(infra_root / "modules" / "eks"),
        ModuleInvocationSpec(
            module="aurora", directory=infra_root / "modules" / "aurora", operation="validate"
        ),
    ]

    verdicts = driver.run_all(specs, max_workers=2)

    assert [verdict.subject_id for verdict in verdicts] == ["validate/eks", "validate/aurora"]
    for verdict in verdicts:
        assert verdict.status == "fail"
        assert verdict.error_kind == "tool_fatal"
        assert verdict.attempts == 1
        assert "cannot execute terraform binary" in verdict.message


def test_uncreatable_plan_directory_is_fatal(infra_root: Path, tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("", encoding="utf-8")
    runner = FakeRunner()
    driver, _ = _driver(runner)
    spec = build_invocations(infra_root, plan_dir=blocker / "plans", modules=["vpc"])[0]

    verdict = driver.run(spec)

    assert verdict.error_kind == "tool_fatal"
    assert verdict.message.startswith("plan: cannot create plan output directory")
    assert runner.subcommands() == ["init"]
