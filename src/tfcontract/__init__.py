"""tfcontract: static contract checks for the Coder deployment Terraform tree.

tfcontract answers one question per check: does the declarative source on
disk contain the constructs the deployment contract requires?

Key features:
    - Policy catalog (required resources, outputs, variables, substrings)
    - Deterministic, parallel evaluation with one verdict per policy
    - Terraform init/validate/plan driver with transient-error retries
    - pytest plugin: every policy and module invocation is a named test

Example:
    >>> from pathlib import Path
    >>> from tfcontract.catalog import load_catalog
    >>> from tfcontract.evaluator import PolicyEvaluator
    >>> from tfcontract.loader import FileLoader
    >>> evaluator = PolicyEvaluator(FileLoader(Path("..")))
    >>> verdicts = evaluator.evaluate(load_catalog())
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
