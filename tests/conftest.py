"""pytest fixtures for tfcontract."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from infra_tree import write_infra_tree
from tfcontract.catalog import PolicyCatalog, load_catalog
from tfcontract.evaluator import PolicyEvaluator
from tfcontract.loader import FileLoader

pytest_plugins = ["pytester"]


@pytest.fixture()
def infra_root(tmp_path: Path) -> Path:
    return write_infra_tree(tmp_path / "infra")


@pytest.fixture()
def loader(infra_root: Path) -> FileLoader:
    return FileLoader(infra_root)


@pytest.fixture()
def evaluator(loader: FileLoader) -> PolicyEvaluator:
    return PolicyEvaluator(loader)


@pytest.fixture(scope="session")
def catalog() -> PolicyCatalog:
    return load_catalog()
