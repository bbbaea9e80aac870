"""pytest integration: one named test per policy and per module invocation.

Enable it from a conftest next to the infrastructure tree::

    pytest_plugins = ["tfcontract.pytest_plugin"]

Any test requesting ``policy_entry`` (or ``policy_verdict``) is parametrized
over the catalog; any test requesting ``invocation_spec`` (or
``invocation_verdict``) over the Terraform invocation table. Units share no
mutable state, so ``pytest -n auto --dist loadgroup`` runs them in parallel;
invocations of the same module directory share an xdist group so their
``terraform init`` runs never overlap.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from tfcontract.catalog import PolicyCatalog, load_catalog
from tfcontract.config import HarnessSettings
from tfcontract.errors import CatalogError
from tfcontract.evaluator import PolicyEvaluator
from tfcontract.invocations import build_invocations
from tfcontract.loader import FileLoader
from tfcontract.models import ModuleInvocationSpec, PolicyEntry, Verdict
from tfcontract.terraform import TerraformDriver

_catalog_key = pytest.StashKey["PolicyCatalog | CatalogError"]()


class CatalogProblem:
    """Placeholder parameter carrying a catalog error into a failing test."""

    def __init__(self, error: CatalogError) -> None:
        self.error = error


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("tfcontract")
    group.addoption(
        "--tfcontract-root",
        default=None,
        help="Infrastructure root containing modules/ (default: TFCONTRACT_INFRA_ROOT or ..).",
    )
    group.addoption(
        "--tfcontract-catalog",
        default=None,
        help="Policy catalog YAML (default: bundled catalog).",
    )
    group.addoption(
        "--tfcontract-terraform",
        default=None,
        help="Terraform binary used by invocation tests.",
    )
    group.addoption(
        "--tfcontract-plan-dir",
        default=None,
        help="Directory for plan output files (default: module directory).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "terraform: runs the terraform binary")
    config.addinivalue_line(
        "markers", "xdist_group(name): run on one xdist worker under --dist loadgroup"
    )


def settings_from_config(config: pytest.Config) -> HarnessSettings:
    """Merge TFCONTRACT_* settings with command line options."""
    root = config.getoption("--tfcontract-root")
    catalog = config.getoption("--tfcontract-catalog")
    plan_dir = config.getoption("--tfcontract-plan-dir")
    return HarnessSettings.from_env().with_overrides(
        infra_root=Path(root) if root else None,
        catalog_path=Path(catalog) if catalog else None,
        terraform_bin=config.getoption("--tfcontract-terraform"),
        plan_dir=Path(plan_dir) if plan_dir else None,
    )


def _catalog(config: pytest.Config) -> PolicyCatalog | CatalogError:
    cached = config.stash.get(_catalog_key, None)
    if cached is not None:
        return cached
    settings = settings_from_config(config)
    result: PolicyCatalog | CatalogError
    try:
        catalog = load_catalog(settings.catalog_path)
        PolicyEvaluator(FileLoader(settings.infra_root)).preflight(catalog)
        result = catalog
    except CatalogError as exc:
        result = exc
    config.stash[_catalog_key] = result
    return result


def pytest_generate_tests(metafunc: pytest.Metafunc) -> None:
    if "policy_entry" in metafunc.fixturenames:
        catalog = _catalog(metafunc.config)
        if isinstance(catalog, CatalogError):
            metafunc.parametrize("policy_entry", [CatalogProblem(catalog)], ids=["catalog-error"])
        else:
            metafunc.parametrize(
                "policy_entry",
                list(catalog),
                ids=[entry.policy_id for entry in catalog],
            )

    if "invocation_spec" in metafunc.fixturenames:
        settings = settings_from_config(metafunc.config)
        specs = build_invocations(settings.infra_root, plan_dir=settings.plan_dir)
        metafunc.parametrize(
            "invocation_spec",
            [
                pytest.param(
                    spec,
                    id=spec.invocation_id,
                    marks=[
                        pytest.mark.terraform,
                        pytest.mark.xdist_group(name=str(spec.directory.resolve())),
                    ],
                )
                for spec in specs
            ],
        )


@pytest.fixture(scope="session")
def tfcontract_settings(pytestconfig: pytest.Config) -> HarnessSettings:
    return settings_from_config(pytestconfig)


@pytest.fixture(scope="session")
def tfcontract_loader(tfcontract_settings: HarnessSettings) -> FileLoader:
    return FileLoader(tfcontract_settings.infra_root)


@pytest.fixture(scope="session")
def terraform_driver(tfcontract_settings: HarnessSettings) -> TerraformDriver:
    if shutil.which(tfcontract_settings.terraform_bin) is None:
        pytest.skip(f"{tfcontract_settings.terraform_bin} is not installed")
    return TerraformDriver(
        tfcontract_settings.terraform_bin,
        max_retries=tfcontract_settings.max_retries,
        backoff_seconds=tfcontract_settings.retry_backoff_seconds,
        timeout_seconds=tfcontract_settings.tool_timeout_seconds,
    )


@pytest.fixture()
def policy_verdict(
    policy_entry: PolicyEntry | CatalogProblem,
    tfcontract_loader: FileLoader,
) -> Verdict:
    """Evaluate the parametrized policy entry."""
    if isinstance(policy_entry, CatalogProblem):
        pytest.fail(f"CatalogError: {policy_entry.error}", pytrace=False)
    verdict = PolicyEvaluator(tfcontract_loader).evaluate_entry(policy_entry)
    if verdict.status == "cancelled":
        pytest.skip(verdict.message)
    return verdict


@pytest.fixture()
def invocation_verdict(
    invocation_spec: ModuleInvocationSpec,
    terraform_driver: TerraformDriver,
) -> Verdict:
    """Run terraform for the parametrized invocation."""
    verdict = terraform_driver.run(invocation_spec)
    if verdict.status == "cancelled":
        pytest.skip(verdict.message)
    return verdict
