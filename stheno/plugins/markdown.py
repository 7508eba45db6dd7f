"""Markdown plugin.

Registers two content handlers in the ``pages`` group:

- MarkdownPage: Markdown files with optional YAML front matter (``---``
  fenced) or a ```` ```metadata ```` block.
- JsonPage: JSON files whose keys are the metadata and whose ``content`` key
  is Markdown.

Relative links in Markdown are resolved through the content tree, so
``[about](../about.md)`` points at the URL the linked page is rendered to.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin, urlsplit

import mistune
import yaml

from ..content import ContentPlugin, ContentTree, FilePath
from ..utils import read_json
from .page import Page

FRONTMATTER_RE = re.compile(r"^-{3,}\s([\s\S]*?)-{3,}(\s[\s\S]*|\s?)$")
DEFAULT_EXTENSIONS = ["strikethrough", "footnotes", "table", "url"]


def resolve_link(content: ContentPlugin, uri: str, base_url: str) -> str:
    """Resolve a link found in ``content`` against the content tree.

    Links with a scheme and pure fragments are returned unchanged. Other
    links are walked from the content's directory (``..`` goes up, a leading
    ``/`` starts at the root); if they land on a content node its URL is used,
    otherwise the link is resolved against ``base_url``.
    """
    parts = urlsplit(uri)
    if parts.scheme or uri.startswith("#"):
        return uri
    nav: Any = content.parent
    segments = parts.path.split("/") if parts.path else []
    while segments and nav is not None:
        segment = segments.pop(0)
        if segment == "":
            while nav.parent is not None:
                nav = nav.parent
        elif segment == "..":
            nav = nav.parent
        elif segment == ".":
            continue
        elif isinstance(nav, ContentTree):
            nav = nav.get(segment)
        else:
            nav = None
    if isinstance(nav, ContentPlugin):
        fragment = f"#{parts.fragment}" if parts.fragment else ""
        return nav.get_url() + fragment
    return urljoin(base_url, uri)


def _metadata_error(exc: yaml.YAMLError, source: str) -> str:
    problem = getattr(exc, "problem", None)
    mark = getattr(exc, "problem_mark", None)
    if problem is None or mark is None:
        return f"YAML Parsing error {exc}"
    lines = source.split("\n")
    line = lines[mark.line] if mark.line < len(lines) else ""
    return f"YAML: {problem}\n\n{line}\n{' ' * mark.column}^\n"


def extract_metadata(content: str) -> tuple[dict[str, Any], str]:
    """Split a Markdown document into metadata and body.

    Returns:
        Tuple of (metadata dict, markdown body).

    Raises:
        ValueError: If the metadata block is not valid YAML.
    """
    source = ""
    markdown = content
    if content.startswith("---"):
        match = FRONTMATTER_RE.match(content)
        if match:
            source, markdown = match.group(1), match.group(2)
    elif content.startswith("```metadata\n"):
        end = content.find("\n```\n")
        if end != -1:
            source = content[12:end]
            markdown = content[end + 5 :]
    if not source.strip():
        return {}, markdown
    try:
        metadata = yaml.safe_load(source)
    except yaml.YAMLError as exc:
        raise ValueError(_metadata_error(exc, source)) from exc
    return (metadata if isinstance(metadata, dict) else {}), markdown


class _LinkRenderer(mistune.HTMLRenderer):
    """HTML renderer resolving links through the content tree and highlighting code."""

    def __init__(self, content: ContentPlugin, base_url: str):
        super().__init__(escape=False)
        self.content = content
        self.base_url = base_url

    def link(self, text: str, url: str, title: str | None = None) -> str:
        return super().link(text, resolve_link(self.content, url, self.base_url), title)

    def block_code(self, code: str, info: str | None = None) -> str:
        if info:
            try:
                from pygments import highlight
                from pygments.formatters import HtmlFormatter
                from pygments.lexers import get_lexer_by_name
                from pygments.util import ClassNotFound

                lexer = get_lexer_by_name(info.split()[0], stripall=True)
                return highlight(code, lexer, HtmlFormatter(cssclass="highlight"))
            except ClassNotFound:
                pass
        return super().block_code(code, info)


class MarkdownPage(Page):
    """A page written in Markdown.

    Attributes:
        markdown: Markdown body without the metadata block.
    """

    def __init__(self, filepath: FilePath | None, metadata: dict[str, Any], markdown: str):
        super().__init__(filepath, metadata)
        self.markdown = markdown

    def get_location(self, base: str | None = None) -> str:
        """URL of the directory this page is rendered into."""
        uri = self.get_url(base)
        return uri[: uri.rfind("/") + 1]

    def get_html(self, base: str | None = None) -> str:
        options = self._config_value("markdown") or {}
        renderer = _LinkRenderer(self, self.get_location(base))
        markdown = mistune.create_markdown(
            renderer=renderer,
            plugins=options.get("plugins", DEFAULT_EXTENSIONS),
        )
        return markdown(self.markdown)

    @classmethod
    def from_file(cls, env, filepath: FilePath) -> MarkdownPage:
        text = filepath.full.read_text(encoding="utf-8")
        metadata, markdown = extract_metadata(text)
        return cls(filepath, metadata, markdown)


class JsonPage(MarkdownPage):
    """A page described by a JSON object; ``content`` holds its Markdown."""

    @classmethod
    def from_file(cls, env, filepath: FilePath) -> JsonPage:
        metadata = read_json(filepath.full)
        if not isinstance(metadata, dict):
            raise ValueError("expected a JSON object")
        return cls(filepath, metadata, metadata.get("content", ""))


def setup(env) -> None:
    env.register_content_plugin("pages", "**/*.{markdown,mkd,md}", MarkdownPage)
    env.register_content_plugin("pages", "**/*.json", JsonPage)
