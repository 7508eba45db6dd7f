"""Generator engine for Stheno.

Generators produce content that does not exist on disk (index pages,
pagination, feeds). Each generator receives the file-derived tree and returns
a virtual tree; the virtual trees are merged underneath the real tree so a
real file always wins over generated content at the same key.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .content import ContentPlugin, ContentTree, merge
from .errors import GeneratorError, MergeError, SthenoError
from .registry import GeneratorRegistration
from .utils import maybe_await

if TYPE_CHECKING:
    from .environment import Environment

logger = logging.getLogger(__name__)


def _tag(env: Environment, registration: GeneratorRegistration, output: Mapping[str, Any]) -> None:
    for key, item in output.items():
        if isinstance(item, ContentPlugin):
            item.env = env
            item.group = registration.group
        elif isinstance(item, Mapping):
            _tag(env, registration, item)
        else:
            raise MergeError(f"Invalid item in tree for '{key}'")


async def run_generator(
    env: Environment, contents: ContentTree, registration: GeneratorRegistration
) -> ContentTree:
    """Run one generator and return its output as a virtual tree.

    Args:
        env: Environment the generated content belongs to.
        contents: The file-derived content tree.
        registration: Generator to run.

    Returns:
        A new tree holding the generator's output (empty if it returned None).

    Raises:
        GeneratorError: If the generator raises.
        MergeError: If the output holds something that is neither a content
            node nor a subtree.
    """
    name = getattr(registration.fn, "__name__", "generator")
    logger.debug("running generator %s (group: %s)", name, registration.group)
    try:
        output = await maybe_await(registration.fn(contents))
    except SthenoError:
        raise
    except Exception as exc:
        raise GeneratorError(f"generator '{name}' failed: {exc}") from exc
    tree = ContentTree("", env.content_groups())
    if output is None:
        return tree
    if not isinstance(output, Mapping):
        raise MergeError(f"generator '{name}' returned {type(output).__name__}, expected a tree")
    _tag(env, registration, output)
    merge(tree, output)
    return tree


async def run_generators(env: Environment, contents: ContentTree) -> ContentTree:
    """Run every registered generator and merge the results with ``contents``.

    Generators run one at a time in registration order and all of them see
    only the real tree. Their outputs are merged into a fresh tree in the same
    order, then the real tree is merged last.

    Returns:
        The merged tree, or ``contents`` itself when no generators are registered.
    """
    generators = env.registry.generators
    if not generators:
        return contents
    generated = [await run_generator(env, contents, registration) for registration in generators]
    return merge_trees(env, generated, contents)


def merge_trees(env: Environment, generated: list[ContentTree], contents: ContentTree | None) -> ContentTree:
    """Merge virtual trees in order, then the real tree, into a new tree."""
    tree = ContentTree("", env.content_groups())
    for gentree in generated:
        merge(tree, gentree)
    if contents is not None:
        merge(tree, contents)
    return tree
