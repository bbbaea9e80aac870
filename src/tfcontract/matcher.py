"""Token matching for policy entries.

Matching is textual: substring containment or an explicitly scoped regex.
No part of the declarative language is parsed here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from tfcontract.errors import FileUnavailable
from tfcontract.models import ALL_TF_FILES, PolicyEntry


@dataclass(frozen=True)
class MatchResult:
    passed: bool
    message: str


def match(text: str, entry: PolicyEntry) -> MatchResult:
    """Decide whether ``text`` satisfies ``entry``."""
    if entry.category == "resource_kind":
        found = entry.framed_token in text
        return _result(found, f"module {entry.module} missing required resource: {entry.token}")

    if entry.category == "output_name":
        found = entry.framed_token in text
        return _result(found, f"module {entry.module} missing required output: {entry.token}")

    if entry.category == "variable_name":
        pattern = re.compile(re.escape(entry.token) + r"\s*=")
        found = pattern.search(text) is not None
        return _result(
            found,
            f"{_where(entry)} missing required variable: {entry.token}",
        )

    if entry.category == "regex":
        found = re.search(entry.token, text, flags=re.MULTILINE) is not None
        return _result(found, f"{_where(entry)} has no match for pattern: {entry.token}")

    if entry.negate:
        offending = _forbidden_occurrence(text, entry.token)
        if offending is not None:
            return MatchResult(
                passed=False,
                message=f"{_where(entry)} contains forbidden text: {offending!r}",
            )
        return MatchResult(passed=True, message="")

    return _result(
        entry.token in text,
        f"{_where(entry)} does not contain required text: {entry.token!r}",
    )


def describe_unavailable(entry: PolicyEntry, exc: FileUnavailable) -> str:
    """Message for an entry whose input could not be read."""
    return f"FileUnavailable: {_where(entry)} could not be read ({exc.reason}): {exc.path}"


def _forbidden_occurrence(text: str, token: str) -> str | None:
    if token in text:
        return token
    # A mapping key also counts at top level when spaced before the colon.
    if token.endswith(":"):
        stem = token[:-1].strip()
        if stem:
            hit = re.search(rf"^{re.escape(stem)}\s*:", text, flags=re.MULTILINE)
            if hit is not None:
                return hit.group(0)
    return None


def _where(entry: PolicyEntry) -> str:
    if entry.file_selector == ALL_TF_FILES:
        return f"module {entry.module}"
    return f"{entry.module}:{entry.file_selector}"


def _result(found: bool, failure_message: str) -> MatchResult:
    if found:
        return MatchResult(passed=True, message="")
    return MatchResult(passed=False, message=failure_message)
