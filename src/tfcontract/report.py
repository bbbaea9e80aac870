"""Verdict summaries, JSON reports and console tables."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from tfcontract.hcl import parse_simple_assignments
from tfcontract.models import Verdict

TFVARS_RELATIVE_PATH = Path("environments") / "prod.tfvars"

_STATUS_STYLES = {
    "pass": "green",
    "fail": "red",
    "error": "bold red",
    "cancelled": "yellow",
}


def summarize(verdicts: Sequence[Verdict]) -> dict[str, Any]:
    """Count verdicts per status; the run passes only if every verdict passes."""
    counts = Counter(verdict.status for verdict in verdicts)
    return {
        "overall_status": "pass" if all(v.passed for v in verdicts) else "fail",
        "total": len(verdicts),
        "passed": counts.get("pass", 0),
        "failed": counts.get("fail", 0),
        "errored": counts.get("error", 0),
        "cancelled": counts.get("cancelled", 0),
    }


def tfvars_keys(infra_root: Path) -> list[str]:
    """Variable names bound in the production tfvars file, if readable."""
    path = infra_root / TFVARS_RELATIVE_PATH
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return []
    return sorted(parse_simple_assignments(content))


def build_report(
    *,
    infra_root: Path,
    policy_verdicts: Sequence[Verdict] = (),
    invocation_verdicts: Sequence[Verdict] = (),
) -> dict[str, Any]:
    """Assemble the machine-readable run report."""
    verdicts = [*policy_verdicts, *invocation_verdicts]
    summary = summarize(verdicts)
    return {
        "generated_at": datetime.now(UTC).isoformat(),
        "infra_root": str(infra_root),
        **summary,
        "environment": {"tfvars_keys": tfvars_keys(infra_root)},
        "policies": [verdict.model_dump(mode="json") for verdict in policy_verdicts],
        "invocations": [verdict.model_dump(mode="json") for verdict in invocation_verdicts],
    }


def write_report(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def render_table(console: Console, verdicts: Sequence[Verdict], title: str) -> None:
    """Print one row per verdict."""
    table = Table(title=title, box=box.ASCII, show_header=True, header_style="bold")
    table.add_column("Status")
    table.add_column("Module")
    table.add_column("Check")
    table.add_column("Detail", overflow="fold")
    for verdict in verdicts:
        style = _STATUS_STYLES.get(verdict.status, "")
        table.add_row(
            Text(verdict.status, style=style),
            Text(verdict.module),
            Text(verdict.subject_id),
            Text(verdict.message),
        )
    console.print(table)
