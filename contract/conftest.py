"""Deployment contract harness.

Place this directory next to ``modules/`` and run ``pytest`` from inside it;
the infrastructure root defaults to the parent directory. For parallel runs
use ``pytest -n auto --dist loadgroup`` so invocations of one module stay on
one worker.
"""

pytest_plugins = ["tfcontract.pytest_plugin"]
