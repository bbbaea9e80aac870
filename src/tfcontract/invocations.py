"""Fixture table of module invocations for the Terraform driver."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tfcontract.models import ModuleInvocationSpec


@dataclass(frozen=True)
class InvocationFixture:
    module: str
    operation: str
    variables: dict[str, Any] = field(default_factory=dict)
    plan_file_name: str | None = None


INVOCATION_FIXTURES: tuple[InvocationFixture, ...] = (
    InvocationFixture(
        module="vpc",
        operation="plan",
        variables={
            "project_name": "coder-test",
            "environment": "test",
            "aws_region": "us-east-1",
            "vpc_cidr": "10.0.0.0/16",
            "availability_zones": ["us-east-1a", "us-east-1b", "us-east-1c"],
            "max_workspaces": 100,
            "enable_vpc_endpoints": False,
            "tags": {"Test": "true"},
        },
        plan_file_name="vpc-plan.out",
    ),
    InvocationFixture(module="vpc", operation="validate"),
    InvocationFixture(module="eks", operation="validate"),
    InvocationFixture(module="aurora", operation="validate"),
    InvocationFixture(module="coder", operation="validate"),
)


def build_invocations(
    infra_root: Path,
    plan_dir: Path | None = None,
    modules: Iterable[str] | None = None,
    fixtures: Iterable[InvocationFixture] = INVOCATION_FIXTURES,
) -> list[ModuleInvocationSpec]:
    """Resolve the fixture table against an infrastructure root.

    Plan files land in ``plan_dir`` when given, otherwise in the module
    directory; the file name carries the module name so paths never collide.
    """
    module_filter = set(modules) if modules else None
    specs: list[ModuleInvocationSpec] = []
    for fixture in fixtures:
        if module_filter is not None and fixture.module not in module_filter:
            continue
        directory = infra_root / "modules" / fixture.module
        plan_file = None
        if fixture.plan_file_name is not None:
            plan_file = (plan_dir or directory) / fixture.plan_file_name
        specs.append(
            ModuleInvocationSpec(
                module=fixture.module,
                directory=directory,
                operation=fixture.operation,  # type: ignore[arg-type]
                variables=dict(fixture.variables),
                plan_file=plan_file,
            )
        )
    return specs
