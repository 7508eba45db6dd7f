import asyncio
import os
from pathlib import Path

import pytest

from stheno.config import Config
from stheno.environment import Environment
from stheno.errors import ScanError
from stheno.templates import load_templates


def create_site(tmp_path: Path) -> Path:
    templates = tmp_path / "templates"
    (templates / "partials").mkdir(parents=True)
    (templates / "layout.html").write_text("{{ page.title }}", encoding="utf-8")
    (templates / "partials" / "nav.html").write_text("<nav></nav>", encoding="utf-8")
    (templates / "notes.txt").write_text("not a template", encoding="utf-8")
    return tmp_path


def test_load_templates_keys_by_relative_path(tmp_path):
    env = Environment(Config(), create_site(tmp_path))
    env.load_plugins()
    templates = asyncio.run(load_templates(env))
    assert list(templates) == ["layout.html", "partials/nav.html"]


def test_missing_template_directory_is_a_scan_error(tmp_path):
    env = Environment(Config(), tmp_path)
    with pytest.raises(ScanError, match="does not exist"):
        asyncio.run(load_templates(env))


def test_unreadable_template_directory_is_a_scan_error(monkeypatch, tmp_path):
    site = create_site(tmp_path)
    env = Environment(Config(), site)
    env.load_plugins()

    def walk(top, onerror=None):
        yield str(top), ["partials"], ["layout.html"]
        onerror(PermissionError(13, "Permission denied", os.path.join(top, "partials")))

    monkeypatch.setattr("stheno.templates.os.walk", walk)
    with pytest.raises(ScanError, match="template partials: Permission denied"):
        asyncio.run(load_templates(env))
