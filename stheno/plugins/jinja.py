"""Jinja2 template plugin.

Loads ``*.html``, ``*.htm``, ``*.xml``, ``*.jinja`` and ``*.j2`` files in the
template directory as Jinja2 templates. Templates can extend and include each
other by their path relative to the template directory. Extra Jinja2
``Environment`` options can be given in the ``jinja`` config key.
"""

from __future__ import annotations

from typing import Any

from jinja2 import Environment as JinjaEnvironment
from jinja2 import FileSystemLoader, Template, select_autoescape

from ..content import FilePath
from ..templates import TemplatePlugin

PATTERN = "**/*.{html,htm,xml,jinja,j2}"


class JinjaTemplate(TemplatePlugin):
    """A compiled Jinja2 template.

    ``setup`` binds a per-environment subclass whose ``jinja`` attribute is
    the Jinja2 environment used to compile templates.
    """

    jinja: JinjaEnvironment | None = None

    def __init__(self, template: Template):
        self.template = template

    def render(self, locals: dict[str, Any]) -> bytes:
        return self.template.render(locals).encode("utf-8")

    @classmethod
    def from_file(cls, env, filepath: FilePath) -> JinjaTemplate:
        if cls.jinja is None:
            raise RuntimeError("jinja plugin was not set up for this environment")
        return cls(cls.jinja.get_template(filepath.relative))


def create_jinja_environment(env) -> JinjaEnvironment:
    """Create the Jinja2 environment for templates of ``env``."""
    options = dict(env.config.get("jinja") or {})
    options.setdefault("autoescape", select_autoescape(["html", "htm", "xml"]))
    jinja = JinjaEnvironment(loader=FileSystemLoader(str(env.templates_path)), **options)
    jinja.globals["helpers"] = env.helpers
    return jinja


def setup(env) -> None:
    handler = type("JinjaTemplate", (JinjaTemplate,), {"jinja": create_jinja_environment(env)})
    env.register_template_plugin(PATTERN, handler)
