"""Paginator plugin.

Registers a generator that lists the index pages of the article directories
(``articles/*/index.*`` by default), newest first, over numbered index pages.
Enable it with ``"plugins": ["stheno.plugins.paginator"]``.

Options (config key ``paginator``):
    template: Template used to render each page (``index.html``).
    articles: Directory holding one subdirectory per article (``articles``).
    first: Output filename of the first page (``index.html``).
    filename: Output filename of the other pages; ``%d`` is the page number
        (``page/%d/index.html``).
    per_page: Articles per page (2).
"""

from __future__ import annotations

import math
from typing import Any

from ..content import ContentTree
from ..errors import UnknownTemplateError
from .page import Page

DEFAULTS: dict[str, Any] = {
    "template": "index.html",
    "articles": "articles",
    "first": "index.html",
    "filename": "page/%d/index.html",
    "per_page": 2,
}


def get_options(env) -> dict[str, Any]:
    options = dict(DEFAULTS)
    options.update(env.config.get("paginator") or {})
    return options


def get_articles(contents: ContentTree, options: dict[str, Any]) -> list[Page]:
    """Return the article index pages, newest first, skipping template ``none``."""
    directory = contents.get(options["articles"])
    if not isinstance(directory, ContentTree):
        return []
    articles = [item.index for item in directory.groups["directories"]]
    articles = [a for a in articles if a is not None and getattr(a, "template", None) != "none"]
    articles.sort(key=lambda a: a.date, reverse=True)
    return articles


class PaginatorPage(Page):
    """One page of the article listing."""

    def __init__(self, page_num: int, articles: list[Page], options: dict[str, Any]):
        super().__init__(None, {})
        self.page_num = page_num
        self.articles = articles
        self.options = options
        self.prev_page: PaginatorPage | None = None
        self.next_page: PaginatorPage | None = None

    def get_filename(self) -> str:
        if self.page_num == 1:
            return self.options["first"]
        return self.options["filename"].replace("%d", str(self.page_num))

    def get_view(self):
        return self.render_listing

    def render_listing(self, env, content, locals, contents, templates):
        template = templates.get(self.options["template"])
        if template is None:
            raise UnknownTemplateError(f"unknown paginator template '{self.options['template']}'")
        ctx: dict[str, Any] = {
            "articles": self.articles,
            "page_num": self.page_num,
            "prev_page": self.prev_page,
            "next_page": self.next_page,
            "page": self,
        }
        ctx.update(locals)
        return template.render(ctx)


def setup(env) -> None:
    options = get_options(env)

    def paginator(contents: ContentTree) -> dict[str, Any]:
        articles = get_articles(contents, options)
        per_page = max(1, int(options["per_page"]))
        num_pages = math.ceil(len(articles) / per_page)
        pages = [
            PaginatorPage(i + 1, articles[i * per_page : (i + 1) * per_page], options)
            for i in range(num_pages)
        ]
        for prev, nxt in zip(pages, pages[1:]):
            prev.next_page = nxt
            nxt.prev_page = prev
        tree: dict[str, Any] = {"pages": {f"{page.page_num}.page": page for page in pages}}
        if pages:
            tree["index.page"] = pages[0]
            tree["last.page"] = pages[-1]
        return tree

    env.register_generator("paginator", paginator)
    env.helpers["get_articles"] = lambda contents: get_articles(contents, options)
