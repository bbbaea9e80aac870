"""tfcontract CLI entrypoint.

Usage:
    tfcontract check       # Evaluate the static policy catalog
    tfcontract validate    # Run terraform init + validate/plan per module
    tfcontract run         # Both of the above
    tfcontract list        # Print policy and invocation identifiers
    tfcontract --version   # Print version
"""

from __future__ import annotations

import argparse
import sys
import uuid
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console

from tfcontract import __version__
from tfcontract.catalog import PolicyCatalog, load_catalog
from tfcontract.config import HarnessSettings
from tfcontract.errors import CatalogError
from tfcontract.evaluator import PolicyEvaluator
from tfcontract.invocations import build_invocations
from tfcontract.loader import FileLoader
from tfcontract.logging import configure_logging, run_context
from tfcontract.models import Verdict
from tfcontract.report import build_report, render_table, summarize, write_report
from tfcontract.terraform import TerraformDriver


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tfcontract",
        description="Static contract checks and Terraform validation for the Coder deployment.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"tfcontract {__version__}",
    )
    parser.add_argument(
        "--infra-root",
        type=Path,
        default=None,
        help="Infrastructure root containing modules/ (default: TFCONTRACT_INFRA_ROOT or ..).",
    )
    parser.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="Policy catalog YAML (default: bundled catalog).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write a JSON report to this path.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level for structured logs on stderr.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Evaluate the static policy catalog.")
    _add_catalog_filters(check)

    validate = subparsers.add_parser("validate", help="Run terraform against every module.")
    _add_tool_options(validate)

    run = subparsers.add_parser("run", help="Evaluate the catalog and run terraform.")
    _add_catalog_filters(run)
    _add_tool_options(run)

    subparsers.add_parser("list", help="List policy and invocation identifiers.")
    return parser


def _add_catalog_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--group",
        action="append",
        default=[],
        help="Only evaluate this policy group (repeatable).",
    )
    parser.add_argument(
        "--module",
        action="append",
        default=[],
        help="Only evaluate policies for this module (repeatable).",
    )


def _add_tool_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--tool-module",
        action="append",
        default=[],
        help="Only run terraform for this module (repeatable).",
    )
    parser.add_argument(
        "--terraform",
        type=str,
        default=None,
        help="Terraform binary (default: TFCONTRACT_TERRAFORM_BIN or terraform).",
    )
    parser.add_argument(
        "--plan-dir",
        type=Path,
        default=None,
        help="Directory for plan output files (default: module directory).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-process deadline in seconds.",
    )


def _resolve_settings(args: argparse.Namespace) -> HarnessSettings:
    settings = HarnessSettings.from_env()
    return settings.with_overrides(
        infra_root=args.infra_root,
        catalog_path=args.catalog,
        log_level=args.log_level,
        terraform_bin=getattr(args, "terraform", None),
        plan_dir=getattr(args, "plan_dir", None),
        tool_timeout_seconds=getattr(args, "timeout", None),
    )


def _select_catalog(settings: HarnessSettings, args: argparse.Namespace) -> PolicyCatalog:
    catalog = load_catalog(settings.catalog_path)
    return catalog.select(groups=args.group or None, modules=args.module or None)


def _check(settings: HarnessSettings, catalog: PolicyCatalog) -> list[Verdict]:
    evaluator = PolicyEvaluator(FileLoader(settings.infra_root), max_workers=settings.max_workers)
    return evaluator.evaluate(catalog)


def _validate(settings: HarnessSettings, args: argparse.Namespace) -> list[Verdict]:
    driver = TerraformDriver(
        settings.terraform_bin,
        max_retries=settings.max_retries,
        backoff_seconds=settings.retry_backoff_seconds,
        timeout_seconds=settings.tool_timeout_seconds,
    )
    specs = build_invocations(
        settings.infra_root,
        plan_dir=settings.plan_dir,
        modules=args.tool_module or None,
    )
    return driver.run_all(specs, max_workers=settings.max_workers)


def _list(settings: HarnessSettings) -> int:
    for entry in load_catalog(settings.catalog_path):
        print(entry.policy_id)
    for spec in build_invocations(settings.infra_root, plan_dir=settings.plan_dir):
        print(spec.invocation_id)
    return 0


def run(args: argparse.Namespace) -> int:
    settings = _resolve_settings(args)
    configure_logging(settings.log_level)
    with run_context(uuid.uuid4().hex, command=args.command):
        if args.command == "list":
            return _list(settings)

        policy_verdicts: list[Verdict] = []
        invocation_verdicts: list[Verdict] = []
        if args.command in {"check", "run"}:
            policy_verdicts = _check(settings, _select_catalog(settings, args))
        if args.command in {"validate", "run"}:
            invocation_verdicts = _validate(settings, args)

    console = Console()
    if policy_verdicts:
        render_table(console, policy_verdicts, title="Policies")
    if invocation_verdicts:
        render_table(console, invocation_verdicts, title="Terraform")

    summary = summarize([*policy_verdicts, *invocation_verdicts])
    console.print(
        f"overall_status: {summary['overall_status']} "
        f"({summary['passed']}/{summary['total']} passed)"
    )
    if args.output is not None:
        payload = build_report(
            infra_root=settings.infra_root,
            policy_verdicts=policy_verdicts,
            invocation_verdicts=invocation_verdicts,
        )
        write_report(args.output, payload)
        console.print(f"report: {args.output}")
    return 0 if summary["overall_status"] == "pass" else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments and run; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return run(args)
    except (CatalogError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
