"""Pydantic models for tfcontract.

This module defines the data structures shared by the harness:
- Policy entries that make up the catalog
- Module invocation specs for the configuration engine driver
- Verdicts reported for every policy and every invocation

All models are frozen so a catalog cannot change during a run.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Category = Literal["resource_kind", "output_name", "variable_name", "substring", "regex"]
Operation = Literal["validate", "plan"]
VerdictStatus = Literal["pass", "fail", "cancelled", "error"]
ErrorKind = Literal[
    "match_failure",
    "file_unavailable",
    "catalog_error",
    "tool_fatal",
    "tool_retryable",
    "deadline",
    "cancelled",
]

ALL_TF_FILES = "*.tf"
ROOT_MODULE = "root"


class PolicyEntry(BaseModel):
    """One required (or forbidden) construct in the infrastructure source.

    Attributes:
        group: Stable policy group identifier (e.g. "provisioning-vpc").
        module: Module the entry applies to; "root" means the infrastructure root.
        category: How the token is framed before matching.
        token: Literal text or regex pattern to look for.
        file_selector: "*.tf" for every Terraform file in the module, otherwise
            a path relative to the module directory.
        negate: For substring entries, require the token to be absent.

    Example:
        ```python
        entry = PolicyEntry(
            group="provisioning-vpc",
            module="vpc",
            category="resource_kind",
            token="aws_nat_gateway",
        )
        ```
    """

    model_config = ConfigDict(frozen=True)

    group: str = Field(..., description="Policy group identifier")
    module: str = Field(..., description="Module name")
    category: Category = Field(..., description="Matcher framing")
    token: str = Field(..., description="Literal token or regex pattern")
    file_selector: str = Field(default=ALL_TF_FILES, description="File selector")
    negate: bool = Field(default=False, description="Require absence")

    @field_validator("group", "module", "token", "file_selector")
    @classmethod
    def validate_non_empty(cls, value: str) -> str:
        """Reject empty identifiers and tokens."""
        if not value or not value.strip():
            raise ValueError("must be non-empty")
        return value

    @model_validator(mode="after")
    def validate_category_options(self) -> PolicyEntry:
        """Only substring entries may be negated; regex tokens must compile."""
        if self.negate and self.category != "substring":
            raise ValueError(f"negate is only supported for substring entries, not {self.category}")
        if self.category == "regex":
            try:
                re.compile(self.token)
            except re.error as exc:
                raise ValueError(f"invalid regex {self.token!r}: {exc}") from exc
        return self

    @property
    def policy_id(self) -> str:
        """Stable identifier used for test names and reports."""
        category = f"not-{self.category}" if self.negate else self.category
        return f"{self.group}/{self.module}/{self.file_selector}/{category}/{self.token}"

    @property
    def framed_token(self) -> str:
        """Human-readable rendering of what the matcher searches for."""
        if self.category == "resource_kind":
            return f'resource "{self.token}"'
        if self.category == "output_name":
            return f'output "{self.token}"'
        if self.category == "variable_name":
            return f"{self.token} ="
        return self.token

    def dedup_key(self) -> tuple[str, str, str, str, bool]:
        """Key under which two entries are considered equivalent."""
        return (self.module, self.category, self.token, self.file_selector, self.negate)


class ModuleInvocationSpec(BaseModel):
    """A single configuration engine run against one module directory.

    Attributes:
        module: Module name used in reports.
        directory: Module directory the engine runs in.
        operation: "validate" or "plan"; there is no apply.
        variables: Variable bindings passed to plan as -var flags.
        plan_file: Optional plan output path, unique per module.
    """

    model_config = ConfigDict(frozen=True)

    module: str = Field(..., description="Module name")
    directory: Path = Field(..., description="Module directory")
    operation: Operation = Field(..., description="Engine operation")
    variables: dict[str, Any] = Field(default_factory=dict, description="Plan variables")
    plan_file: Path | None = Field(default=None, description="Plan output path")

    @model_validator(mode="after")
    def validate_operation_options(self) -> ModuleInvocationSpec:
        """validate accepts neither variable bindings nor a plan file."""
        if self.operation == "validate" and self.variables:
            raise ValueError("validate does not accept variable bindings")
        if self.operation == "validate" and self.plan_file is not None:
            raise ValueError("validate does not accept a plan output file")
        return self

    @property
    def invocation_id(self) -> str:
        """Stable identifier used for test names and reports."""
        return f"{self.operation}/{self.module}"


class Verdict(BaseModel):
    """Outcome of one policy or one module invocation.

    Verdicts are independent: one failure never short-circuits another.
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(..., description="Policy or invocation identifier")
    module: str = Field(..., description="Module the verdict belongs to")
    kind: Literal["policy", "invocation"] = Field(..., description="Verdict source")
    status: VerdictStatus = Field(..., description="Outcome")
    message: str = Field(default="", description="Explanation")
    error_kind: ErrorKind | None = Field(default=None, description="Failure class")
    attempts: int = Field(default=1, ge=0, description="Engine attempts made")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Wall time")

    @property
    def passed(self) -> bool:
        return self.status == "pass"
