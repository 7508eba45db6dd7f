"""Template loading for Stheno.

Walks the template directory and loads every file that a registered
template handler claims. Files no handler claims are not templates and are
skipped.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .content import FilePath
from .errors import ScanError, SthenoError
from .utils import maybe_await

if TYPE_CHECKING:
    from .environment import Environment

logger = logging.getLogger(__name__)


class TemplatePlugin:
    """Base class for template handlers.

    Subclasses implement ``from_file`` to compile a template file and
    ``render`` to produce bytes from a context mapping. Either may return an
    awaitable.
    """

    @classmethod
    def from_file(cls, env: Environment, filepath: FilePath) -> TemplatePlugin:
        raise NotImplementedError(f"{cls.__name__} does not implement from_file")

    def render(self, locals: dict[str, Any]) -> bytes:
        raise NotImplementedError(f"{type(self).__name__} does not implement render")


def _walk(root: Path) -> list[FilePath]:
    def unreadable(exc: OSError) -> None:
        relative = Path(os.path.relpath(exc.filename, root)).as_posix() if exc.filename else "."
        raise ScanError(exc.strerror or str(exc), path=f"template {relative}") from exc

    files: list[FilePath] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=unreadable):
        dirnames.sort()
        for name in sorted(filenames):
            full = Path(dirpath) / name
            files.append(FilePath(full=full, relative=full.relative_to(root).as_posix()))
    return files


async def load_template(env: Environment, filepath: FilePath) -> TemplatePlugin | None:
    """Load one template file, or return None when no handler claims it.

    Raises:
        ScanError: If the handler fails to compile the file.
    """
    registration = env.registry.resolve_template(filepath.relative)
    if registration is None:
        return None
    try:
        return await maybe_await(registration.handler.from_file(env, filepath))
    except SthenoError as exc:
        raise ScanError(exc.message, path=f"template {filepath.relative}") from exc
    except Exception as exc:
        raise ScanError(str(exc), path=f"template {filepath.relative}") from exc


async def load_templates(env: Environment) -> dict[str, TemplatePlugin]:
    """Load every template under the template directory.

    Args:
        env: Environment holding config and plugin registry.

    Returns:
        Mapping of template-relative path (slash-separated) to template.

    Raises:
        ScanError: On the first unreadable directory or failing template.
    """
    root = env.templates_path
    if not root.is_dir():
        raise ScanError(f"template directory {root} does not exist")
    templates: dict[str, TemplatePlugin] = {}
    for filepath in _walk(root):
        template = await load_template(env, filepath)
        if template is not None:
            templates[filepath.relative] = template
    return templates
