"""Trusted, in-process loading of Python hook files.

Trusted hook files run with full interpreter capability: they may import
modules, read files and open network connections. Before a file executes, the
run's :class:`~apihooks.hooks.registry.HookRegistry` is injected into its
module namespace as ``hooks``, so a hook file needs no import to register
callbacks::

    # hooks/machines.py
    def check(transaction):
        if hooks.configuration.options.sandbox:
            ...

    hooks.after("Machines > Machines collection > Get Machines", check)

Loading is fail-fast per file: the first file that raises stops the load phase
with :class:`~apihooks.exceptions.HookLoadError`, while registrations made by
files loaded before it are kept.
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Optional

from apihooks.exceptions import HookLoadError
from apihooks.hooks.registry import HookRegistry

logger = logging.getLogger(__name__)

ModuleImporter = Callable[[str, Path, Mapping[str, Any]], ModuleType]


def import_module_from_path(
    module_name: str, module_path: Path, namespace: Mapping[str, Any]
) -> ModuleType:
    """Import a module from *module_path* with *namespace* pre-populated.

    Args:
        module_name: Name to assign to the module.
        module_path: Path to the Python source file.
        namespace: Names placed in the module's globals before it executes.

    Returns:
        The executed module.
    """
    spec = importlib.util.spec_from_file_location(module_name, str(module_path))
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot create an import spec for {module_path}")
    module = importlib.util.module_from_spec(spec)
    module.__dict__.update(namespace)
    spec.loader.exec_module(module)
    return module


def module_name_for(path: Path) -> str:
    """Build a module name unique to *path* so same-named files do not clash."""
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:10]
    stem = "".join(c if c.isalnum() else "_" for c in path.stem)
    return f"apihooks_hookfile_{stem}_{digest}"


class TrustedLoader:
    """Loads hook files in the current interpreter.

    Args:
        import_module: The importer used for each file. Defaults to
            :func:`import_module_from_path`; test suites pass a recording or
            substituting importer here instead of patching the import system.
        extra_namespace: Additional names injected into every hook module
            next to ``hooks``.
    """

    def __init__(
        self,
        import_module: ModuleImporter = import_module_from_path,
        extra_namespace: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._import_module = import_module
        self._extra_namespace = dict(extra_namespace or {})

    def namespace_for(self, registry: HookRegistry) -> dict[str, Any]:
        return {**self._extra_namespace, "hooks": registry}

    def load_files(self, paths: Iterable[str], registry: HookRegistry) -> list[ModuleType]:
        """Import every file in *paths*, in order, registering into *registry*.

        Raises:
            HookLoadError: On the first file that fails to import.
        """
        modules: list[ModuleType] = []
        for raw_path in paths:
            path = Path(raw_path)
            try:
                module = self._import_module(
                    module_name_for(path), path, self.namespace_for(registry)
                )
            except Exception as exc:
                raise HookLoadError(f"Failed to load hook file: {exc}", source=str(path)) from exc
            logger.info("Loaded hook file %s", path)
            modules.append(module)
        return modules

    def load_sources(
        self, sources: Mapping[str, str], registry: HookRegistry
    ) -> list[ModuleType]:
        """Execute inline hook sources keyed by virtual filename.

        Raises:
            HookLoadError: On the first source that fails to compile or run.
        """
        modules: list[ModuleType] = []
        for filename, source in sources.items():
            module = ModuleType(module_name_for(Path(filename)))
            module.__dict__.update(self.namespace_for(registry))
            try:
                exec(compile(source, filename, "exec"), module.__dict__)
            except Exception as exc:
                raise HookLoadError(f"Failed to load hook source: {exc}", source=filename) from exc
            logger.info("Loaded inline hook source %s", filename)
            modules.append(module)
        return modules
