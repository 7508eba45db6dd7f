"""Page plugin.

Provides ``Page``, the base class for content that renders through a
template, and registers the ``template`` view that renders it.

Output filenames come from a filename template (config ``filename_template``
or the page's ``filename`` metadata, ``:file.html`` by default) with these
tokens: ``:year``, ``:month``, ``:day``, ``:title``, ``:file``, ``:ext``,
``:basename`` and ``:dirname``. ``{{ ... }}`` expressions are rendered with
``env`` and ``page`` in scope. A leading ``/`` makes the filename relative to
the output root instead of the page's directory.
"""

from __future__ import annotations

import posixpath
import re
from datetime import date, datetime
from typing import Any

from jinja2.sandbox import SandboxedEnvironment
from markupsafe import Markup

from ..content import ContentPlugin, FilePath
from ..errors import UnknownTemplateError
from ..utils import rfc822, slugify, strip_extension

DEFAULT_INTRO_CUTOFFS = ['<span class="more', "<h2", "<hr"]
EPOCH = datetime(1970, 1, 1)

_TOKEN_RE = re.compile(r":(year|month|day|title|file|ext|basename|dirname)")
_expressions = SandboxedEnvironment()


def template_view(env, content, locals, contents, templates):
    """Render a page with the template it names.

    Returns None for pages whose template is ``none``.
    """
    if content.template == "none":
        return None
    template = templates.get(posixpath.normpath(content.template))
    if template is None:
        raise UnknownTemplateError(
            f"page '{content.filename}' specifies unknown template '{content.template}'"
        )
    ctx: dict[str, Any] = {"page": content}
    ctx.update(locals)
    return template.render(ctx)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return EPOCH
    return EPOCH


class Page(ContentPlugin):
    """Content with metadata, rendered through a template.

    Subclasses provide ``get_html``.

    Attributes:
        filepath: Source file, or None for generated pages.
        metadata: Page metadata (front matter).
    """

    def __init__(self, filepath: FilePath | None = None, metadata: dict[str, Any] | None = None):
        self.filepath = filepath
        self.metadata = metadata or {}

    def _config_value(self, name: str, default: Any = None) -> Any:
        if self.env is None:
            return default
        return self.env.config.get(name, default)

    def get_filename(self) -> str:
        relative = self.filepath.relative if self.filepath else ""
        dirname = posixpath.dirname(relative)
        basename = posixpath.basename(relative)
        values = {
            "year": f"{self.date.year}",
            "month": f"{self.date.month:02d}",
            "day": f"{self.date.day:02d}",
            "title": slugify(str(self.title)),
            "file": strip_extension(basename),
            "ext": posixpath.splitext(basename)[1],
            "basename": basename,
            "dirname": dirname,
        }
        filename = _TOKEN_RE.sub(lambda m: values[m.group(1)], self.filename_template)
        if "{{" in filename:
            filename = _expressions.from_string(filename).render(env=self.env, page=self)
        if filename.startswith("/"):
            return filename[1:]
        return posixpath.join(dirname, filename)

    def get_url(self, base: str | None = None) -> str:
        return re.sub(r"/index\.html$", "/", super().get_url(base))

    def get_view(self):
        return self.metadata.get("view") or "template"

    def get_html(self, base: str | None = None) -> str:
        raise NotImplementedError(f"{type(self).__name__} does not implement get_html")

    def get_intro(self, base: str | None = None) -> str:
        html = self.get_html(base)
        cutoffs = self._config_value("intro_cutoffs") or DEFAULT_INTRO_CUTOFFS
        positions = [i for i in (html.find(cutoff) for cutoff in cutoffs) if i != -1]
        if positions:
            return html[: min(positions)]
        return html

    @property
    def filename_template(self) -> str:
        return (
            self.metadata.get("filename")
            or self._config_value("filename_template")
            or ":file.html"
        )

    @property
    def template(self) -> str:
        return self.metadata.get("template") or self._config_value("default_template") or "none"

    @property
    def title(self) -> str:
        return self.metadata.get("title") or "Untitled"

    @property
    def date(self) -> datetime:
        return _to_datetime(self.metadata.get("date"))

    @property
    def rfc822date(self) -> str:
        return rfc822(self.date)

    @property
    def html(self) -> Markup:
        return Markup(self.get_html())

    @property
    def intro(self) -> Markup:
        return Markup(self.get_intro())

    @property
    def has_more(self) -> bool:
        return len(self.get_html()) > len(self.get_intro())


def setup(env) -> None:
    env.plugins["Page"] = Page
    env.register_view("template", template_view)
