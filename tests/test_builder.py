import asyncio
from pathlib import Path

import pytest

from stheno.builder import build_tree, load_content
from stheno.config import Config
from stheno.content import ContentPlugin, ContentTree, FilePath, StaticFile, flatten
from stheno.environment import Environment
from stheno.errors import ScanError


def create_site(tmp_path: Path) -> Path:
    contents = tmp_path / "contents"
    (contents / "a").mkdir(parents=True)
    (contents / "a" / "index.md").write_text("# A", encoding="utf-8")
    (contents / "a" / "other.md").write_text("# Other", encoding="utf-8")
    (contents / "b.md").write_text("# B", encoding="utf-8")
    (tmp_path / "templates").mkdir()
    return contents


def make_env(tmp_path: Path, **options) -> Environment:
    return Environment(Config(options), tmp_path)


class Note(ContentPlugin):
    def __init__(self, filepath):
        self.filepath = filepath

    def get_view(self):
        return "none"

    def get_filename(self):
        return self.filepath.relative.replace(".md", ".html")

    @classmethod
    def from_file(cls, env, filepath):
        return cls(filepath)


def test_build_tree_mirrors_directories(tmp_path):
    create_site(tmp_path)
    env = make_env(tmp_path)
    tree = asyncio.run(build_tree(env))

    assert list(tree) == ["a", "b.md"]
    assert isinstance(tree["a"], ContentTree)
    assert list(tree["a"]) == ["index.md", "other.md"]
    assert len(flatten(tree)) == 3
    assert tree["a"].parent is tree
    assert tree["a"]["index.md"].parent is tree["a"]
    assert tree["b.md"].parent is tree
    assert isinstance(tree["b.md"], StaticFile)
    assert tree["b.md"].group == "files"
    assert tree["a"]["other.md"].filename == "a/other.md"
    assert tree["b.md"].source == (tmp_path / "contents" / "b.md").resolve()


def test_build_tree_uses_registered_handlers_and_groups(tmp_path):
    create_site(tmp_path)
    env = make_env(tmp_path)
    env.register_content_plugin("notes", "**/*.md", Note)
    tree = asyncio.run(build_tree(env))

    assert isinstance(tree["b.md"], Note)
    assert tree.groups["notes"] == [tree["b.md"]]
    assert tree["a"].groups["notes"] == [tree["a"]["index.md"], tree["a"]["other.md"]]
    assert tree["b.md"].env is env
    assert env.plugins["Note"] is Note


def test_build_tree_skips_ignored_paths(tmp_path):
    contents = create_site(tmp_path)
    (contents / "a" / "scratch.tmp").write_text("x", encoding="utf-8")
    (contents / "drafts").mkdir()
    (contents / "drafts" / "wip.md").write_text("x", encoding="utf-8")
    env = make_env(tmp_path, ignore=["**/*.tmp", "drafts/**"])
    tree = asyncio.run(build_tree(env))

    assert "drafts" not in tree
    assert "scratch.tmp" not in tree["a"]
    assert len(flatten(tree)) == 3


def test_file_limit_bounds_concurrent_loads(tmp_path):
    contents = tmp_path / "contents"
    for folder in ("x", "y"):
        (contents / folder).mkdir(parents=True)
        for i in range(4):
            (contents / folder / f"{i}.md").write_text("x", encoding="utf-8")
    state = {"active": 0, "peak": 0}

    class SlowNote(Note):
        @classmethod
        async def from_file(cls, env, filepath):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.01)
            state["active"] -= 1
            return cls(filepath)

    env = make_env(tmp_path, file_limit=3)
    env.register_content_plugin("notes", "**/*.md", SlowNote)
    tree = asyncio.run(build_tree(env))

    assert len(flatten(tree)) == 8
    assert state["peak"] == 3
    assert list(tree["x"]) == ["0.md", "1.md", "2.md", "3.md"]


def test_handler_failure_aborts_with_scan_error(tmp_path):
    create_site(tmp_path)

    class Broken(Note):
        @classmethod
        def from_file(cls, env, filepath):
            if filepath.relative == "a/other.md":
                raise ValueError("boom")
            return cls(filepath)

    env = make_env(tmp_path)
    env.register_content_plugin("notes", "**/*.md", Broken)
    with pytest.raises(ScanError) as info:
        asyncio.run(build_tree(env))
    assert info.value.path == "a/other.md"
    assert str(info.value) == "a/other.md: boom"


def test_load_content_rejects_non_plugins(tmp_path):
    contents = create_site(tmp_path)

    class NotAPlugin(Note):
        @classmethod
        def from_file(cls, env, filepath):
            return "oops"

    env = make_env(tmp_path)
    env.register_content_plugin("notes", "**/*.md", NotAPlugin)
    with pytest.raises(ScanError, match="returned str"):
        asyncio.run(load_content(env, FilePath(contents / "b.md", "b.md")))


def test_missing_contents_directory_is_a_scan_error(tmp_path):
    env = make_env(tmp_path, contents="./nowhere")
    with pytest.raises(ScanError):
        asyncio.run(build_tree(env))
