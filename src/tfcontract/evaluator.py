"""Evaluate the policy catalog against an infrastructure tree."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from tfcontract.catalog import PolicyCatalog
from tfcontract.errors import Cancelled, CatalogError, FileUnavailable
from tfcontract.loader import FileLoader
from tfcontract.logging import get_logger
from tfcontract.matcher import describe_unavailable, match
from tfcontract.models import PolicyEntry, Verdict

logger = get_logger(__name__)


class PolicyEvaluator:
    """Runs every catalog entry as an independent unit of work.

    Entries share nothing but the immutable catalog: each one loads its own
    input, so a failing or unreadable file only affects entries bound to it.
    """

    def __init__(self, loader: FileLoader, max_workers: int | None = None) -> None:
        self.loader = loader
        self.max_workers = max_workers

    def preflight(self, catalog: PolicyCatalog) -> None:
        """Fail fast when the catalog names modules that are not on disk."""
        missing = [module for module in catalog.modules() if not self.loader.module_exists(module)]
        if missing:
            raise CatalogError(
                "catalog names modules missing under "
                f"{self.loader.infra_root}: {', '.join(missing)}"
            )

    def evaluate(
        self,
        catalog: PolicyCatalog,
        cancel: threading.Event | None = None,
    ) -> list[Verdict]:
        """Evaluate every entry; results come back in catalog order."""
        self.preflight(catalog)
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="tfcontract-policy"
        ) as pool:
            verdicts = list(pool.map(lambda entry: self.evaluate_entry(entry, cancel), catalog))

        failed = sum(1 for verdict in verdicts if verdict.status in {"fail", "error"})
        logger.info("catalog_evaluated", policies=len(verdicts), failed=failed)
        return verdicts

    def evaluate_entry(
        self,
        entry: PolicyEntry,
        cancel: threading.Event | None = None,
    ) -> Verdict:
        """Evaluate one entry and convert every per-entry error into a verdict."""
        start = time.monotonic()
        try:
            text = self.loader.load(entry.module, entry.file_selector, cancel=cancel)
        except Cancelled as exc:
            return _verdict(entry, "cancelled", str(exc), "cancelled", start)
        except FileUnavailable as exc:
            message = describe_unavailable(entry, exc)
            logger.warning(
                "policy_input_unavailable", policy_id=entry.policy_id, path=str(exc.path)
            )
            return _verdict(entry, "fail", message, "file_unavailable", start)

        result = match(text, entry)
        if result.passed:
            return _verdict(entry, "pass", "", None, start)

        logger.warning("policy_failed", policy_id=entry.policy_id, reason=result.message)
        return _verdict(entry, "fail", result.message, "match_failure", start)


def _verdict(
    entry: PolicyEntry,
    status: str,
    message: str,
    error_kind: str | None,
    start: float,
) -> Verdict:
    return Verdict(
        subject_id=entry.policy_id,
        module=entry.module,
        kind="policy",
        status=status,  # type: ignore[arg-type]
        message=message,
        error_kind=error_kind,  # type: ignore[arg-type]
        duration_seconds=round(time.monotonic() - start, 4),
    )
