"""Plugin registry for Stheno.

Holds the content and template handler registrations, the named views and
the generators registered by plugins. Resolution walks registrations from
the most recent to the oldest and returns the first whose glob matches, so
a plugin loaded later can override the handlers of one loaded earlier.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .content import ContentPlugin, StaticFile
from .utils import glob_match

logger = logging.getLogger(__name__)


def none_view(env, content, locals, contents, templates):
    """View that produces no output."""
    return None


@dataclass(frozen=True)
class ContentRegistration:
    """A content handler registration.

    Attributes:
        group: Category group instances are listed under.
        pattern: Glob matched against the content-relative path.
        handler: ContentPlugin subclass.
    """

    group: str
    pattern: str
    handler: type[ContentPlugin]


@dataclass(frozen=True)
class TemplateRegistration:
    """A template handler registration.

    Attributes:
        pattern: Glob matched against the template-relative path.
        handler: TemplatePlugin subclass.
    """

    pattern: str
    handler: type


@dataclass(frozen=True)
class GeneratorRegistration:
    """A generator registration.

    Attributes:
        group: Category group generated instances are listed under.
        fn: Callable receiving the content tree.
    """

    group: str
    fn: Callable[..., Any]


DEFAULT_CONTENT = ContentRegistration("files", "**", StaticFile)


class PluginRegistry:
    """Ordered registrations of handlers, views and generators."""

    def __init__(self):
        self.content: list[ContentRegistration] = []
        self.templates: list[TemplateRegistration] = []
        self.generators: list[GeneratorRegistration] = []
        self.views: dict[str, Callable[..., Any]] = {"none": none_view}

    def register_content(self, group: str, pattern: str, handler: type[ContentPlugin]) -> None:
        logger.debug(
            "registering content plugin %s that handles: %s", handler.__name__, pattern
        )
        self.content.append(ContentRegistration(group, pattern, handler))

    def register_template(self, pattern: str, handler: type) -> None:
        logger.debug(
            "registering template plugin %s that handles: %s", handler.__name__, pattern
        )
        self.templates.append(TemplateRegistration(pattern, handler))

    def register_view(self, name: str, fn: Callable[..., Any]) -> None:
        self.views[name] = fn

    def register_generator(self, group: str, fn: Callable[..., Any]) -> None:
        self.generators.append(GeneratorRegistration(group, fn))

    def resolve_content(self, relative_path: str) -> ContentRegistration:
        """Return the registration handling a content file.

        Args:
            relative_path: Path relative to the content root.

        Returns:
            The most recently registered matching registration, or the
            static file fallback when nothing matches.
        """
        for registration in reversed(self.content):
            if glob_match(relative_path, registration.pattern):
                return registration
        return DEFAULT_CONTENT

    def resolve_template(self, relative_path: str) -> TemplateRegistration | None:
        """Return the registration handling a template file, or None."""
        for registration in reversed(self.templates):
            if glob_match(relative_path, registration.pattern):
                return registration
        return None

    def content_groups(self) -> list[str]:
        """Return every group name, content registrations first, without duplicates."""
        groups: list[str] = []
        for registration in [*self.content, *self.generators]:
            if registration.group not in groups:
                groups.append(registration.group)
        return groups
