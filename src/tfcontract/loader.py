"""Read declarative configuration files from the infrastructure tree."""

from __future__ import annotations

import os
import threading
from pathlib import Path

from tfcontract.errors import Cancelled, FileUnavailable
from tfcontract.models import ALL_TF_FILES, ROOT_MODULE

TF_SUFFIX = ".tf"


class FileLoader:
    """Loads module files relative to an infrastructure root.

    Modules live under ``<infra_root>/modules/<name>``; the ``root`` pseudo-module
    is the infrastructure root itself. The tree is only ever read.
    """

    def __init__(self, infra_root: Path) -> None:
        self.infra_root = infra_root

    def module_dir(self, module: str) -> Path:
        """Return the directory backing a module name."""
        if module == ROOT_MODULE:
            return self.infra_root
        return self.infra_root / "modules" / module

    def module_exists(self, module: str) -> bool:
        """Return True if the module directory exists on disk."""
        return self.module_dir(module).is_dir()

    def load(
        self,
        module: str,
        file_selector: str,
        cancel: threading.Event | None = None,
    ) -> str:
        """Resolve a file selector to text."""
        if file_selector == ALL_TF_FILES:
            return self.load_module_concat(module, cancel=cancel)
        return self.load_named(module, file_selector, cancel=cancel)

    def load_module_concat(self, module: str, cancel: threading.Event | None = None) -> str:
        """Concatenate every ``*.tf`` file of a module in directory-listing order."""
        directory = self.module_dir(module)
        try:
            names = sorted(entry.name for entry in directory.iterdir())
        except OSError as exc:
            raise FileUnavailable(directory, exc.strerror or str(exc)) from exc

        parts: list[str] = []
        for name in names:
            path = directory / name
            if not name.endswith(TF_SUFFIX) or not path.is_file():
                continue
            parts.append(self._read(path, cancel))
        return "".join(parts)

    def load_named(
        self,
        module: str,
        relative_path: str,
        cancel: threading.Event | None = None,
    ) -> str:
        """Return the content of one file inside a module.

        An unlistable module directory makes every file in it unavailable, even
        when the file itself could still be opened by path.
        """
        directory = self.module_dir(module)
        path = directory / relative_path
        if cancel is not None and cancel.is_set():
            raise Cancelled(f"read of {path} cancelled")
        _require_listable(directory)
        return self._read(path, cancel)

    @staticmethod
    def _read(path: Path, cancel: threading.Event | None) -> str:
        if cancel is not None and cancel.is_set():
            raise Cancelled(f"read of {path} cancelled")
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise FileUnavailable(path, exc.strerror or str(exc)) from exc
        return data.decode("utf-8", errors="replace")


def _require_listable(directory: Path) -> None:
    try:
        with os.scandir(directory):
            pass
    except OSError as exc:
        raise FileUnavailable(directory, exc.strerror or str(exc)) from exc
