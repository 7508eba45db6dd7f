import asyncio
import sys
from pathlib import Path

import pytest

from stheno import create
from stheno.config import Config
from stheno.content import ContentPlugin
from stheno.environment import DEFAULT_PLUGINS, Environment
from stheno.errors import ConfigParseError, PluginLoadError


def create_site(tmp_path: Path) -> Path:
    (tmp_path / "contents").mkdir()
    (tmp_path / "templates").mkdir()
    return tmp_path


PLUGIN_SOURCE = '''
from stheno.content import ContentPlugin


class Text(ContentPlugin):
    def __init__(self, filepath):
        self.filepath = filepath

    def get_view(self):
        return "none"

    def get_filename(self):
        return self.filepath.relative

    @classmethod
    def from_file(cls, env, filepath):
        return cls(filepath)


def setup(env):
    env.register_content_plugin("texts", "**/*.txt", Text)
'''


def test_create_from_file_uses_its_directory(tmp_path):
    site = create_site(tmp_path)
    (site / "config.json").write_text('{"output": "./public"}', encoding="utf-8")
    env = create(str(site / "config.json"))
    assert env.work_dir == site.resolve()
    assert env.resolve_path(env.config.output) == (site / "public").resolve()
    assert env.contents_path == (site / "contents").resolve()

    env = Environment.create({"contents": "./pages"}, work_dir=site)
    assert env.contents_path == (site / "pages").resolve()
    assert env.relative_contents_path(site / "pages" / "a" / "b.md") == "a/b.md"


def test_load_plugins_registers_defaults_then_configured(tmp_path):
    site = create_site(tmp_path)
    (site / "plugins").mkdir()
    (site / "plugins" / "text.py").write_text(PLUGIN_SOURCE, encoding="utf-8")
    env = Environment(Config({"plugins": ["./plugins/text.py"]}), site)
    env.load_plugins()

    assert env.registry.content[-1].group == "texts"
    assert "template" in env.views
    assert {"Page", "MarkdownPage", "JsonPage", "StaticFile", "Text"} <= set(env.plugins)
    assert env.content_groups() == ["pages", "texts"]
    assert len(env.modules.loaded()) == len(DEFAULT_PLUGINS) + 1


def test_load_plugin_module_accepts_callables_and_reports_failures(tmp_path):
    env = Environment(Config(), create_site(tmp_path))
    calls = []
    env.load_plugin_module(lambda e: calls.append(e))
    assert calls == [env]

    with pytest.raises(PluginLoadError, match="Error loading plugin './missing.py'"):
        env.load_plugin_module("./missing.py")

    def broken(e):
        raise RuntimeError("bad setup")

    with pytest.raises(PluginLoadError, match="bad setup"):
        env.load_plugin_module(broken)

    with pytest.raises(PluginLoadError, match="no setup"):
        env.load_plugin_module("json")


def test_locals_from_file_and_require(tmp_path):
    site = create_site(tmp_path)
    (site / "locals.json").write_text('{"name": "demo", "helper": 1}', encoding="utf-8")
    (site / "helper.py").write_text("VALUE = 7\n", encoding="utf-8")
    env = Environment(
        Config({"locals": "locals.json", "require": {"helper": "./helper.py", "json": "json"}}),
        site,
    )
    assert env.locals["name"] == "demo"
    assert env.locals["helper"].VALUE == 7
    assert env.locals["json"] is sys.modules["json"]

    (site / "locals.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(ConfigParseError, match="unable to load locals"):
        env.setup_locals()


def test_view_modules_register_under_their_stem(tmp_path):
    site = create_site(tmp_path)
    (site / "views").mkdir()
    (site / "views" / "shout.py").write_text(
        "def view(env, content, locals, contents, templates):\n    return b'HEY'\n",
        encoding="utf-8",
    )
    (site / "views" / "_private.py").write_text("raise RuntimeError('never loaded')\n", encoding="utf-8")
    env = Environment(Config({"views": "views"}), site)
    env.load_views()
    assert env.views["shout"](None, None, {}, None, {}) == b"HEY"

    (site / "views" / "broken.py").write_text("x = 1\n", encoding="utf-8")
    with pytest.raises(PluginLoadError, match="no view function"):
        env.load_views()


def test_reset_drops_registrations_and_file_modules(tmp_path):
    site = create_site(tmp_path)
    (site / "plugins").mkdir()
    (site / "plugins" / "text.py").write_text(PLUGIN_SOURCE, encoding="utf-8")
    env = Environment(Config({"plugins": ["./plugins/text.py"]}), site)
    env.load_plugins()
    names = list(env.modules._file_modules)
    assert names
    generation = env.modules.generation

    env.reset()
    assert env.registry.content == []
    assert env.plugins == {"StaticFile": env.plugins["StaticFile"]}
    assert env.modules.generation == generation + 1
    assert env.modules.loaded() == []
    assert not any(name in sys.modules for name in names)


def test_events(tmp_path):
    env = Environment(Config(), create_site(tmp_path))
    received = []

    def listener(path, ignored):
        received.append((path, ignored))

    env.on("change", listener)
    env.emit("change", "index.html", False)
    env.off("change", listener)
    env.emit("change", "other.html", False)
    assert received == [("index.html", False)]


def test_load_returns_contents_templates_and_locals(tmp_path):
    site = create_site(tmp_path)
    (site / "contents" / "about.md").write_text("---\ntitle: About\n---\nHi", encoding="utf-8")
    (site / "templates" / "layout.html").write_text("{{ page.title }}", encoding="utf-8")
    env = Environment(Config({"locals": {"name": "demo"}}), site)
    result = asyncio.run(env.load())

    assert isinstance(result.contents["about.md"], ContentPlugin)
    assert result.contents["about.md"].title == "About"
    assert list(result.templates) == ["layout.html"]
    assert result.locals == {"name": "demo"}
