"""Error types raised by the harness."""

from __future__ import annotations

from pathlib import Path


class FileUnavailable(RuntimeError):
    """Raised when a required input file or module directory cannot be read."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"file unavailable: {path}: {reason}")


class Cancelled(RuntimeError):
    """Raised when a pending read is abandoned because the run was cancelled."""


class CatalogError(RuntimeError):
    """Raised when the policy catalog is malformed or names a missing module."""


class ToolError(RuntimeError):
    """Base class for configuration engine failures."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        exit_code: int | None = None,
        output: str = "",
        attempts: int = 1,
    ) -> None:
        self.command = command or []
        self.exit_code = exit_code
        self.output = output
        self.attempts = attempts
        super().__init__(message)


class ToolFatal(ToolError):
    """Raised for a failure that is not classified as transient."""


class ToolRetryable(ToolError):
    """Raised when a transient failure persists after every retry."""


class ToolDeadline(ToolError):
    """Raised when a command outlives its deadline and is killed."""
