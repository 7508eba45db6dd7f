"""Render pipeline for Stheno.

Flattens a content tree, resolves and invokes each node's view, and writes
whatever the view produces to a sink under the node's output filename.

Key classes:
- FileSink: Writes rendered output under an output directory.

Key functions:
- render_view: Resolve and invoke the view of a single node.
- render: Render a whole tree to a sink.
"""

from __future__ import annotations

import io
import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .content import ContentPlugin, ContentTree, flatten, inspect
from .errors import RenderError, SthenoError, UnknownViewError, ViewContractError
from .utils import for_each_limit, maybe_await

if TYPE_CHECKING:
    from .environment import Environment

logger = logging.getLogger(__name__)

PAYLOAD_TYPES = (bytes, bytearray, memoryview)


def is_stream(value: Any) -> bool:
    """Return True for readable binary file-like objects."""
    if isinstance(value, io.TextIOBase):
        return False
    return callable(getattr(value, "read", None))


class FileSink:
    """Writes rendered payloads and streams below an output directory.

    Attributes:
        output_dir: Root directory written to.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def destination(self, filename: str) -> Path:
        return self.output_dir / filename

    def write(self, filename: str, result: Any) -> Path:
        """Write bytes or copy a stream to ``filename``, creating parent directories.

        Streams are closed after copying.
        """
        destination = self.destination(filename)
        destination.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(result, PAYLOAD_TYPES):
            destination.write_bytes(bytes(result))
            return destination
        try:
            with open(destination, "wb") as f:
                shutil.copyfileobj(result, f)
        finally:
            close = getattr(result, "close", None)
            if close is not None:
                close()
        return destination


def resolve_view(env: Environment, content: ContentPlugin):
    """Return the view callable for ``content``.

    Raises:
        UnknownViewError: If the content names a view that is not registered.
    """
    view = content.view
    if isinstance(view, str):
        name = view
        view = env.registry.views.get(name)
        if view is None:
            raise UnknownViewError(
                f"content '{content.filename}' specifies unknown view '{name}'"
            )
    return view


async def render_view(
    env: Environment,
    content: ContentPlugin,
    locals: dict[str, Any],
    contents: ContentTree,
    templates: dict[str, Any],
) -> Any:
    """Invoke the view of ``content``.

    The view is called as ``view(env, content, locals, contents, templates)``
    where ``locals`` are the given locals with ``env`` and ``contents`` set.

    Returns:
        None, bytes or a readable binary stream, exactly as the view returned it.

    Raises:
        UnknownViewError: If the view name is not registered.
        RenderError: If the view raises; the message names the content.
    """
    view = resolve_view(env, content)
    scoped = dict(locals or {})
    scoped["env"] = env
    scoped["contents"] = contents
    try:
        return await maybe_await(view(env, content, scoped, contents, templates))
    except SthenoError:
        raise
    except Exception as exc:
        raise RenderError(str(exc), path=content.filename) from exc


def check_result(content: ContentPlugin, result: Any) -> None:
    """Raise ViewContractError unless ``result`` is None, bytes or a stream."""
    if result is None or isinstance(result, PAYLOAD_TYPES) or is_stream(result):
        return
    raise ViewContractError(
        f"View for content '{content.filename}' returned invalid response "
        f"({type(result).__name__}). Expected bytes or a binary stream."
    )


async def render(
    env: Environment,
    contents: ContentTree,
    templates: dict[str, Any],
    locals: dict[str, Any],
    sink: FileSink | Path,
) -> list[Path]:
    """Render every node of ``contents`` to ``sink``.

    At most ``config.file_limit`` nodes render at once. The first failure
    aborts the whole render.

    Args:
        env: Environment holding config and views.
        contents: Tree to render.
        templates: Loaded templates.
        locals: Template context shared by every view.
        sink: FileSink or output directory.

    Returns:
        Paths written, in completion order.
    """
    if not isinstance(sink, FileSink):
        sink = FileSink(Path(sink))
    logger.info("rendering tree:\n%s\n", inspect(contents, 1))
    logger.debug("render output directory: %s", sink.output_dir)
    written: list[Path] = []

    async def render_content(content: ContentPlugin) -> None:
        result = await render_view(env, content, locals, contents, templates)
        check_result(content, result)
        if result is None:
            logger.debug("skipping %s", content.url)
            return
        logger.debug("writing content %s to %s", content.url, sink.destination(content.filename))
        written.append(sink.write(content.filename, result))

    await for_each_limit(flatten(contents), env.config.file_limit, render_content)
    return written
