"""Content tree model for Stheno.

This module defines the two kinds of entries in a content tree and the
operations that work over whole trees.

Key classes:
- FilePath: Absolute and content-relative path of a source file.
- ContentPlugin: Base class for content handlers (tree leaves).
- StaticFile: Fallback handler that copies a file verbatim.
- ContentTree: A directory; maps child names to leaves or subtrees and keeps
  per-category groups of its children.
- TreeArena: Hands out node ids; parent links are stored as ids into it.

Key functions:
- flatten: Depth-first list of every leaf in a tree.
- merge: Overlay one tree onto another (later insertions win).
- inspect: Colored, indented rendering of a tree for the console.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union
from urllib.parse import urljoin

import click

from .errors import MergeError

if TYPE_CHECKING:
    from .environment import Environment


@dataclass(frozen=True)
class FilePath:
    """Location of a source file.

    Attributes:
        full: Absolute path on disk.
        relative: Slash-separated path relative to the content (or template) root.
    """

    full: Path
    relative: str


class TreeArena:
    """Registry of tree nodes addressed by integer ids.

    All subtrees of one tree share an arena. Children keep the id of their
    parent instead of a reference to it, so a tree can be dropped wholesale.
    """

    def __init__(self):
        self._nodes: list[ContentTree] = []

    def add(self, tree: ContentTree) -> int:
        self._nodes.append(tree)
        return len(self._nodes) - 1

    def get(self, node_id: int | None) -> ContentTree | None:
        if node_id is None:
            return None
        return self._nodes[node_id]

    def __len__(self) -> int:
        return len(self._nodes)


class _TreeNode:
    """Parent-link behaviour shared by leaves and subtrees."""

    _arena: TreeArena | None = None
    _parent_id: int | None = None

    @property
    def parent(self) -> ContentTree | None:
        """The tree this node was last inserted into, or None for a root."""
        if self._arena is None:
            return None
        return self._arena.get(self._parent_id)


def static_view(env, content, locals, contents, templates):
    """View that streams the source file unchanged."""
    return open(content.filepath.full, "rb")


class ContentPlugin(_TreeNode, ABC):
    """Base class for content handlers.

    Subclasses implement ``from_file`` to construct an instance from a source
    file and ``get_filename``/``get_view`` to describe its output. The builder
    sets ``env``, ``group`` and ``source`` on every instance it loads; the
    generator engine does the same for generated instances.

    Attributes:
        env: Environment the instance was loaded in.
        group: Category group the instance is listed under in its tree.
        source: Absolute source path, or None for generated content.
    """

    env: Environment | None = None
    group: str = "files"
    source: Path | None = None

    @classmethod
    def from_file(cls, env: Environment, filepath: FilePath) -> ContentPlugin:
        """Construct an instance from a source file.

        May return the instance or an awaitable resolving to it.
        """
        raise NotImplementedError(f"{cls.__name__} does not implement from_file")

    @abstractmethod
    def get_view(self) -> str | Any:
        """Return a view name registered with the environment, or a view callable."""

    @abstractmethod
    def get_filename(self) -> str:
        """Return the output path relative to the output directory."""

    def get_url(self, base: str | None = None) -> str:
        """Return the absolute URL of this content under ``base``.

        Args:
            base: Base URL; defaults to the configured ``base_url``.
        """
        if base is None:
            base = self.env.config.base_url if self.env is not None else "/"
        if not base.endswith("/"):
            base += "/"
        return urljoin(base, self.filename.replace("\\", "/"))

    def get_plugin_color(self) -> str:
        return "cyan"

    def get_plugin_info(self) -> str:
        return f"url: {self.url}"

    @property
    def view(self):
        return self.get_view()

    @property
    def filename(self) -> str:
        return self.get_filename()

    @property
    def url(self) -> str:
        return self.get_url()

    @property
    def plugin_color(self) -> str:
        return self.get_plugin_color()

    @property
    def plugin_info(self) -> str:
        return self.get_plugin_info()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.filename!r}>"


class StaticFile(ContentPlugin):
    """Copies a source file to the output unchanged."""

    def __init__(self, filepath: FilePath):
        self.filepath = filepath

    def get_view(self):
        return static_view

    def get_filename(self) -> str:
        return self.filepath.relative

    def get_plugin_color(self) -> str:
        return "none"

    @classmethod
    def from_file(cls, env: Environment, filepath: FilePath) -> StaticFile:
        return cls(filepath)


Node = Union[ContentPlugin, "ContentTree"]


class ContentTree(_TreeNode, Mapping):
    """A directory in the content tree.

    Children are accessed by name (``tree["about.md"]``). Every leaf child is
    also listed in exactly one category group (its ``group``) and every
    subtree child in ``groups["directories"]``.

    Attributes:
        filename: Path of the directory relative to the content root.
        group_names: Category groups every tree in this family carries.
        groups: Category name to ordered list of children.
        node_id: Id of this tree in its arena.
    """

    def __init__(
        self,
        filename: str = "",
        group_names: list[str] | tuple[str, ...] = (),
        arena: TreeArena | None = None,
    ):
        self.filename = filename
        self.group_names = list(group_names)
        self.groups: dict[str, list[Node]] = {"directories": [], "files": []}
        for name in self.group_names:
            self.groups.setdefault(name, [])
        self._children: dict[str, Node] = {}
        self._arena = arena if arena is not None else TreeArena()
        self.node_id = self._arena.add(self)

    def __getitem__(self, name: str) -> Node:
        return self._children[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._children)

    def __len__(self) -> int:
        return len(self._children)

    @property
    def index(self) -> Node | None:
        """The child whose name starts with ``index.``, if any."""
        for name, child in self._children.items():
            if name.startswith("index."):
                return child
        return None

    def add_subtree(self, name: str, filename: str | None = None) -> ContentTree:
        """Create an empty subtree in this tree's arena and insert it at ``name``."""
        if filename is None:
            filename = f"{self.filename}/{name}" if self.filename else name
        subtree = ContentTree(filename, self.group_names, arena=self._arena)
        self.insert(name, subtree)
        return subtree

    def insert(self, name: str, node: Node) -> None:
        """Insert ``node`` at ``name``, replacing any previous child.

        The previous occupant is removed from its group. Subtrees must belong
        to this tree's arena (see ``add_subtree``).
        """
        previous = self._children.get(name)
        if previous is not None:
            self._detach(previous)
        if isinstance(node, ContentTree):
            if node._arena is not self._arena:
                raise ValueError(f"subtree '{name}' belongs to another tree")
            self.groups["directories"].append(node)
        else:
            node._arena = self._arena
            self.groups.setdefault(node.group, []).append(node)
        node._parent_id = self.node_id
        self._children[name] = node

    def _detach(self, node: Node) -> None:
        key = "directories" if isinstance(node, ContentTree) else node.group
        members = self.groups.get(key, [])
        for i, member in enumerate(members):
            if member is node:
                del members[i]
                break

    def __repr__(self) -> str:
        return f"<ContentTree {self.filename!r} ({len(self)} children)>"


def flatten(tree: ContentTree) -> list[ContentPlugin]:
    """Return every leaf of ``tree``, depth-first in child order."""
    items: list[ContentPlugin] = []
    for value in tree.values():
        if isinstance(value, ContentTree):
            items.extend(flatten(value))
        else:
            items.append(value)
    return items


def merge(root: ContentTree, tree: Mapping[str, Any]) -> None:
    """Merge ``tree`` into ``root`` in place.

    A leaf overwrites whatever is at its key. A subtree (or nested mapping) is
    merged key by key, creating subtrees in ``root`` as needed; it replaces a
    leaf found at the same key.

    Raises:
        MergeError: If an item is neither a content node nor a subtree.
    """
    for key, item in tree.items():
        if isinstance(item, ContentPlugin):
            root.insert(key, item)
        elif isinstance(item, Mapping):
            target = root.get(key)
            if not isinstance(target, ContentTree):
                target = root.add_subtree(key)
            merge(target, item)
        else:
            raise MergeError(f"Invalid item in tree for '{key}'")


def inspect(tree: ContentTree, depth: int = 0) -> str:
    """Render ``tree`` as indented, colored lines, directories first.

    Args:
        tree: Tree to render.
        depth: Indentation level of the first line.
    """
    lines: list[str] = []
    pad = "  " * (depth + 1)
    keys = sorted(tree, key=lambda k: (not isinstance(tree[k], ContentTree), k))
    for key in keys:
        value = tree[key]
        if isinstance(value, ContentTree):
            line = click.style(key, bold=True) + "/"
            children = inspect(value, depth + 1)
            lines.append(pad + line)
            if children:
                lines.append(children)
            continue
        color = value.plugin_color
        name = key if color == "none" else click.style(key, fg=color)
        lines.append(f"{pad}{name} ({click.style(value.plugin_info, fg='bright_black')})")
    return "\n".join(lines)
