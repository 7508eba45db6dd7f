"""Module loading for Stheno.

Plugins, views and ``require``'d locals are Python modules named either by a
dotted import path (``stheno.plugins.paginator``) or by a file path relative
to the working directory (``./plugins/feed.py``).

File modules are executed fresh under a unique name that includes the
registry's generation. Resetting the registry drops them and starts a new
generation, so the next load of the same file runs its current source
instead of a cached copy.
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType

logger = logging.getLogger(__name__)


def is_path_identifier(identifier: str) -> bool:
    return identifier.startswith((".", "/", "~")) or identifier.endswith(".py")


class ModuleRegistry:
    """Modules loaded for one environment, keyed by identifier.

    Attributes:
        work_dir: Directory relative file identifiers are resolved against.
        generation: Incremented on every reset.
    """

    def __init__(self, work_dir: Path):
        self.work_dir = Path(work_dir)
        self.generation = 0
        self._modules: dict[str, ModuleType] = {}
        self._file_modules: list[str] = []
        self._loads = 0

    def resolve(self, identifier: str) -> Path:
        path = Path(identifier).expanduser()
        if not path.is_absolute():
            path = self.work_dir / path
        if path.is_dir():
            path = path / "__init__.py"
        elif path.suffix != ".py" and not path.exists():
            path = path.with_suffix(".py")
        return path.resolve()

    def load(self, identifier: str, fresh: bool = False) -> ModuleType:
        """Load a module by identifier.

        Args:
            identifier: Dotted module path or file path.
            fresh: Re-execute a file module even if this generation already
                loaded it.

        Returns:
            The loaded module.

        Raises:
            ImportError: If the module cannot be found or fails to import.
        """
        if not fresh and identifier in self._modules:
            return self._modules[identifier]
        logger.debug("loading module: %s", identifier)
        if is_path_identifier(identifier):
            module = self._load_file(identifier)
        else:
            module = importlib.import_module(identifier)
        self._modules[identifier] = module
        return module

    def _load_file(self, identifier: str) -> ModuleType:
        path = self.resolve(identifier)
        if not path.exists():
            raise ImportError(f"cannot find module '{identifier}' ({path})")
        logger.debug("resolved: %s", path)
        self._loads += 1
        name = f"_stheno_g{self.generation}_{self._loads}_{path.stem.replace('-', '_')}"
        spec = importlib.util.spec_from_file_location(name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load module '{identifier}' ({path})")
        module = importlib.util.module_from_spec(spec)
        # names are unique per generation, so this never shadows an earlier load
        sys.modules[name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            del sys.modules[name]
            raise
        self._file_modules.append(name)
        return module

    def loaded(self) -> list[str]:
        return list(self._modules)

    def reset(self) -> None:
        """Forget every loaded module and start a new generation."""
        for identifier in self._modules:
            logger.debug("unloading: %s", identifier)
        for name in self._file_modules:
            sys.modules.pop(name, None)
        self._modules.clear()
        self._file_modules.clear()
        self.generation += 1
