"""Content tree construction for Stheno.

Scans the content directory, resolves each file to a content handler through
the environment's plugin registry and assembles the results into a
ContentTree.

Key classes:
- TreeBuilder: Builds one tree; owns the semaphore bounding file loads.

Key functions:
- build_tree: Build the content tree for a directory.
- load_content: Load a single file through its handler.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .content import ContentPlugin, ContentTree, FilePath
from .errors import ScanError, SthenoError
from .utils import glob_match, maybe_await

if TYPE_CHECKING:
    from .environment import Environment

logger = logging.getLogger(__name__)


async def load_content(env: Environment, filepath: FilePath) -> ContentPlugin:
    """Load a content file through the handler registered for it.

    Args:
        env: Environment holding the plugin registry.
        filepath: File to load.

    Returns:
        The handler instance, tagged with its group, environment and source.

    Raises:
        ScanError: If the handler fails; the message names the file.
    """
    logger.debug("loading %s", filepath.relative)
    registration = env.registry.resolve_content(filepath.relative)
    try:
        instance = await maybe_await(registration.handler.from_file(env, filepath))
    except SthenoError as exc:
        raise ScanError(exc.message, path=filepath.relative) from exc
    except Exception as exc:
        raise ScanError(str(exc), path=filepath.relative) from exc
    if not isinstance(instance, ContentPlugin):
        raise ScanError(
            f"{registration.handler.__name__}.from_file returned {type(instance).__name__}",
            path=filepath.relative,
        )
    instance.env = env
    instance.group = registration.group
    instance.source = filepath.full
    return instance


class TreeBuilder:
    """Builds a content tree with a bounded number of files loading at once.

    A single semaphore covers the whole build, so the bound holds across
    nested directories.

    Attributes:
        env: Environment holding config and plugin registry.
        root: Absolute content root; tree filenames are relative to it.
    """

    def __init__(self, env: Environment, root: Path | None = None):
        self.env = env
        self.root = Path(root) if root is not None else env.contents_path
        self._limiter = asyncio.Semaphore(max(1, int(env.config.file_limit)))

    async def build(self) -> ContentTree:
        tree = ContentTree("", self.env.content_groups())
        await self._fill(tree, self.root)
        return tree

    def _is_ignored(self, relative: str) -> bool:
        for pattern in self.env.config.ignore:
            if glob_match(relative, pattern):
                logger.debug("ignoring %s (matches: %s)", relative, pattern)
                return True
        return False

    def _list(self, directory: Path, reldir: str) -> list[FilePath]:
        try:
            names = sorted(os.listdir(directory))
        except OSError as exc:
            raise ScanError(str(exc), path=reldir or ".") from exc
        entries = []
        for name in names:
            relative = f"{reldir}/{name}" if reldir else name
            if self._is_ignored(relative):
                continue
            entries.append(FilePath(full=directory / name, relative=relative))
        return entries

    async def _fill(self, tree: ContentTree, directory: Path) -> None:
        logger.debug("creating content tree from %s", directory)
        entries = self._list(directory, tree.filename)
        tasks = [asyncio.ensure_future(self._create(tree, entry)) for entry in entries]
        if not tasks:
            return
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        # insert in listing order so the tree does not depend on completion order
        for entry, node in zip(entries, results):
            tree.insert(entry.full.name, node)

    async def _create(self, tree: ContentTree, entry: FilePath):
        try:
            is_dir = entry.full.is_dir()
            is_file = not is_dir and entry.full.is_file()
        except OSError as exc:
            raise ScanError(str(exc), path=entry.relative) from exc
        if is_dir:
            subtree = ContentTree(entry.relative, tree.group_names, arena=tree._arena)
            await self._fill(subtree, entry.full)
            return subtree
        if is_file:
            async with self._limiter:
                return await load_content(self.env, entry)
        raise ScanError(f"Invalid file {entry.full}.", path=entry.relative)


async def build_tree(env: Environment, root: Path | None = None) -> ContentTree:
    """Build the content tree for ``root`` (the content directory by default).

    Raises:
        ScanError: On the first I/O or handler failure; no tree is returned.
    """
    return await TreeBuilder(env, root).build()
