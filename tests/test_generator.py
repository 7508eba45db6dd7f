import asyncio
from pathlib import Path

import pytest

from stheno.builder import build_tree
from stheno.config import Config
from stheno.content import ContentPlugin, ContentTree, StaticFile, flatten
from stheno.environment import Environment
from stheno.errors import GeneratorError, MergeError
from stheno.generator import run_generator, run_generators


class Virtual(ContentPlugin):
    def __init__(self, filename, label):
        self._filename = filename
        self.label = label

    def get_view(self):
        return "none"

    def get_filename(self):
        return self._filename


def create_env(tmp_path: Path) -> Environment:
    contents = tmp_path / "contents"
    contents.mkdir()
    (contents / "b.md").write_text("# B", encoding="utf-8")
    return Environment(Config(), tmp_path)


def test_real_content_wins_over_generated(tmp_path):
    env = create_env(tmp_path)
    env.register_generator("virtual", lambda contents: {
        "b.md": Virtual("b.html", "generated"),
        "feed.xml": Virtual("feed.xml", "feed"),
    })

    async def run():
        contents = await build_tree(env)
        return contents, await run_generators(env, contents)

    contents, merged = asyncio.run(run())
    assert merged is not contents
    assert isinstance(merged["b.md"], StaticFile)
    assert merged["feed.xml"].label == "feed"
    assert merged["feed.xml"].group == "virtual"
    assert merged["feed.xml"].env is env
    assert merged.groups["virtual"] == [merged["feed.xml"]]


def test_later_generators_win(tmp_path):
    env = create_env(tmp_path)
    env.register_generator("one", lambda contents: {"x": {"y.html": Virtual("x/y.html", "first")}})

    async def second(contents):
        return {"x": {"y.html": Virtual("x/y.html", "second")}}

    env.register_generator("two", second)

    async def run():
        return await run_generators(env, await build_tree(env))

    merged = asyncio.run(run())
    assert isinstance(merged["x"], ContentTree)
    assert merged["x"]["y.html"].label == "second"
    assert len(flatten(merged)) == 2


def test_generators_only_see_the_real_tree(tmp_path):
    env = create_env(tmp_path)
    seen = []
    env.register_generator("one", lambda contents: {"one.html": Virtual("one.html", "one")})
    env.register_generator("two", lambda contents: seen.append(sorted(contents)))

    async def run():
        return await run_generators(env, await build_tree(env))

    merged = asyncio.run(run())
    assert seen == [["b.md"]]
    assert sorted(merged) == ["b.md", "one.html"]


def test_no_generators_returns_contents(tmp_path):
    env = create_env(tmp_path)

    async def run():
        contents = await build_tree(env)
        return contents, await run_generators(env, contents)

    contents, merged = asyncio.run(run())
    assert merged is contents


def test_invalid_generator_output(tmp_path):
    env = create_env(tmp_path)
    env.register_generator("bad", lambda contents: {"x": 1})
    env.register_generator("worse", lambda contents: ["x"])

    async def run(registration):
        return await run_generator(env, await build_tree(env), registration)

    with pytest.raises(MergeError, match="Invalid item in tree for 'x'"):
        asyncio.run(run(env.generators[0]))
    with pytest.raises(MergeError, match="expected a tree"):
        asyncio.run(run(env.generators[1]))


def test_generator_failures_are_wrapped(tmp_path):
    env = create_env(tmp_path)

    def explode(contents):
        raise KeyError("missing")

    async def refuse(contents):
        raise MergeError("already a stheno error")

    env.register_generator("virtual", explode)
    env.register_generator("virtual", refuse)

    async def run(registration):
        return await run_generator(env, await build_tree(env), registration)

    with pytest.raises(GeneratorError, match="generator 'explode' failed: 'missing'") as info:
        asyncio.run(run(env.generators[0]))
    assert isinstance(info.value.__cause__, KeyError)
    with pytest.raises(MergeError, match="already a stheno error"):
        asyncio.run(run(env.generators[1]))
