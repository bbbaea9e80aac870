"""Policy catalog: the declarative table of required constructs."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tfcontract.errors import CatalogError
from tfcontract.logging import get_logger
from tfcontract.models import ALL_TF_FILES, PolicyEntry

logger = get_logger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("catalog.yaml")

_RECORD_KEYS = {"group", "module", "category", "token", "file", "negate"}


class PolicyCatalog:
    """Immutable, ordered collection of policy entries."""

    def __init__(self, entries: Iterable[PolicyEntry]) -> None:
        self._entries: tuple[PolicyEntry, ...] = tuple(entries)

    def __iter__(self) -> Iterator[PolicyEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def entries(self) -> tuple[PolicyEntry, ...]:
        return self._entries

    def modules(self) -> list[str]:
        """Module names in first-appearance order."""
        return list(dict.fromkeys(entry.module for entry in self._entries))

    def groups(self) -> list[str]:
        """Group identifiers in first-appearance order."""
        return list(dict.fromkeys(entry.group for entry in self._entries))

    def by_module(self) -> dict[str, tuple[PolicyEntry, ...]]:
        """Partition entries by module, preserving catalog order."""
        partitions: dict[str, list[PolicyEntry]] = {}
        for entry in self._entries:
            partitions.setdefault(entry.module, []).append(entry)
        return {module: tuple(entries) for module, entries in partitions.items()}

    def select(
        self,
        *,
        groups: Iterable[str] | None = None,
        modules: Iterable[str] | None = None,
    ) -> PolicyCatalog:
        """Return the sub-catalog restricted to the given groups and modules."""
        group_filter = set(groups) if groups else None
        module_filter = set(modules) if modules else None
        if group_filter:
            unknown = sorted(group_filter - set(self.groups()))
            if unknown:
                raise CatalogError(f"Unknown policy groups: {', '.join(unknown)}")
        return PolicyCatalog(
            entry
            for entry in self._entries
            if (group_filter is None or entry.group in group_filter)
            and (module_filter is None or entry.module in module_filter)
        )


def build_catalog(records: Iterable[Mapping[str, Any]]) -> PolicyCatalog:
    """Validate raw records and build a deduplicated catalog.

    Raises CatalogError for the first malformed record.
    """
    entries: list[PolicyEntry] = []
    seen_keys: set[tuple[str, str, str, str, bool]] = set()
    seen_ids: set[str] = set()

    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise CatalogError(f"catalog record {index} must be a mapping")
        unknown = sorted(set(record) - _RECORD_KEYS)
        if unknown:
            raise CatalogError(f"catalog record {index} has unknown keys: {', '.join(unknown)}")
        try:
            entry = PolicyEntry(
                group=record.get("group", ""),
                module=record.get("module", ""),
                category=record.get("category", ""),
                token=record.get("token", ""),
                file_selector=record.get("file") or ALL_TF_FILES,
                negate=record.get("negate", False),
            )
        except ValidationError as exc:
            raise CatalogError(f"catalog record {index} is invalid: {_first_error(exc)}") from exc

        key = entry.dedup_key()
        if key in seen_keys:
            logger.debug("catalog_duplicate_dropped", policy_id=entry.policy_id)
            continue
        if entry.policy_id in seen_ids:
            raise CatalogError(f"duplicate policy id: {entry.policy_id}")
        seen_keys.add(key)
        seen_ids.add(entry.policy_id)
        entries.append(entry)

    return PolicyCatalog(entries)


def load_catalog(path: Path | None = None) -> PolicyCatalog:
    """Load a catalog YAML file (the bundled catalog by default)."""
    catalog_path = path or DEFAULT_CATALOG_PATH
    try:
        document = yaml.safe_load(catalog_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CatalogError(f"cannot read catalog {catalog_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"catalog {catalog_path} is not valid YAML: {exc}") from exc

    if not isinstance(document, dict) or not isinstance(document.get("policies"), list):
        raise CatalogError(f"catalog {catalog_path} must define a 'policies' list")

    catalog = build_catalog(document["policies"])
    if not catalog:
        raise CatalogError(f"catalog {catalog_path} defines no policies")
    logger.debug("catalog_loaded", path=str(catalog_path), policies=len(catalog))
    return catalog


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message
