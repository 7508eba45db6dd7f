"""Utility functions for Stheno.

This module contains helpers used throughout the Stheno codebase:
glob matching, string and date formatting, JSON loading and small
async composition helpers.

Key functions:
    glob_match: Match a slash-separated relative path against a glob pattern.
    strip_extension: Remove the final extension from a filename.
    slugify: Convert a title to a URL slug.
    read_json: Load a JSON file, annotating parse errors with the filename.
    rfc822: Format a datetime for feeds.
    maybe_await: Resolve a value that may be awaitable.
    for_each_limit: Run a coroutine function over items with bounded concurrency.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import json
import re
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from email.utils import format_datetime
from pathlib import Path
from typing import Any, TypeVar

T = TypeVar("T")


@functools.lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> re.Pattern:
    """Translate a minimatch-style glob pattern to a compiled regex.

    Supports ``**`` (any number of directories, including none), ``*`` and
    ``?`` (never crossing ``/``), ``[...]`` character classes and ``{a,b}``
    alternation. Wildcards do not match a leading dot in a path segment.
    """
    out: list[str] = []
    i = 0
    n = len(pattern)
    depth = 0
    while i < n:
        c = pattern[i]
        segment_start = i == 0 or pattern[i - 1] == "/"
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    i += 1
                    out.append(r"(?:(?!\.)[^/]*/)*")
                else:
                    out.append(r"(?:(?!\.)[^/]*(?:/(?!\.)[^/]*)*)?")
                continue
            out.append(r"(?!\.)[^/]*" if segment_start else r"[^/]*")
        elif c == "?":
            out.append(r"(?!\.)[^/]" if segment_start else r"[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        elif c == "{":
            depth += 1
            out.append("(?:")
        elif c == "}" and depth:
            depth -= 1
            out.append(")")
        elif c == "," and depth:
            out.append("|")
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def glob_match(path: str, pattern: str) -> bool:
    """Check whether a relative path matches a glob pattern.

    Args:
        path: Relative path, with ``/`` or the platform separator.
        pattern: Glob pattern such as ``**/*.{md,markdown}``.

    Returns:
        True if the whole path matches.

    Examples:
        >>> glob_match("posts/hello.md", "**/*.md")
        True

        >>> glob_match("hello.md", "**/*.md")
        True

        >>> glob_match("posts/hello.md", "*.md")
        False
    """
    normalized = Path(path).as_posix() if "\\" in path else path
    if _compile_glob(pattern).match(normalized):
        return True
    # "dir/**" also covers the directory entry itself
    return pattern.endswith("/**") and _compile_glob(pattern[:-3]).match(normalized) is not None


def strip_extension(filename: str) -> str:
    """Remove the final extension from a filename.

    Examples:
        >>> strip_extension("hello.world.md")
        'hello.world'

        >>> strip_extension(".hidden")
        '.hidden'
    """
    return re.sub(r"(.+)\.[^.]+$", r"\1", filename)


def slugify(text: str) -> str:
    """Convert text to a lowercase URL slug.

    Examples:
        >>> slugify("Hello, World!")
        'hello-world'
    """
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", text)
    return cleaned.strip("-").lower()


def read_json(filename: Path) -> Any:
    """Read and parse a JSON file.

    Args:
        filename: Path to the JSON file.

    Returns:
        The decoded JSON value.

    Raises:
        ValueError: If the file does not contain valid JSON. The message
            names the file being parsed.
    """
    text = Path(filename).read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"parsing {Path(filename).name}: {exc}") from exc


def rfc822(date: datetime) -> str:
    """Format a datetime as an RFC 822 date string.

    Naive datetimes are treated as local time.
    """
    if date.tzinfo is None:
        date = date.astimezone()
    return format_datetime(date)


async def maybe_await(value: T | Awaitable[T]) -> T:
    """Return ``value``, awaiting it first when it is awaitable.

    Plugin hooks (handlers, views, generators) may be plain functions or
    coroutine functions; this lets callers treat both alike.
    """
    if inspect.isawaitable(value):
        return await value
    return value


async def for_each_limit(
    items: Iterable[T],
    limit: int,
    fn: Callable[[T], Awaitable[Any]],
) -> None:
    """Run ``fn`` over ``items`` with at most ``limit`` calls in flight.

    The first failure cancels the remaining calls and is re-raised.

    Args:
        items: Items to process.
        limit: Maximum number of concurrent calls.
        fn: Coroutine function to call for each item.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T) -> None:
        async with semaphore:
            await fn(item)

    tasks = [asyncio.ensure_future(run(item)) for item in items]
    if not tasks:
        return
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
