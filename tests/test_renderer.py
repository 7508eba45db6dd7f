import asyncio
import io
from pathlib import Path

import pytest

from stheno.config import Config
from stheno.content import ContentPlugin
from stheno.environment import Environment
from stheno.errors import RenderError, UnknownViewError, ViewContractError
from stheno.renderer import FileSink, is_stream, render_view


class Virtual(ContentPlugin):
    def __init__(self, filename, view):
        self._filename = filename
        self._view = view

    def get_view(self):
        return self._view

    def get_filename(self):
        return self._filename


def create_env(tmp_path: Path, **options) -> Environment:
    contents = tmp_path / "contents"
    (contents / "css").mkdir(parents=True)
    (contents / "css" / "main.css").write_text("body {}", encoding="utf-8")
    (tmp_path / "templates").mkdir()
    return Environment(Config(options), tmp_path)


def test_generated_page_is_written_to_its_filename(tmp_path):
    env = create_env(tmp_path)

    def hello(env, content, locals, contents, templates):
        return b"hello " + content.filename.encode()

    env.register_generator("pages", lambda contents: {
        "page": {"1": {"index.html": Virtual("page/1/index.html", hello)}},
    })
    result = asyncio.run(env.build(tmp_path / "out"))

    out = tmp_path / "out"
    assert (out / "page" / "1" / "index.html").read_bytes() == b"hello page/1/index.html"
    assert (out / "css" / "main.css").read_text(encoding="utf-8") == "body {}"
    assert sorted(p.relative_to(out).as_posix() for p in result.written) == [
        "css/main.css",
        "page/1/index.html",
    ]


def test_none_view_writes_nothing(tmp_path):
    env = create_env(tmp_path)
    env.register_generator("pages", lambda contents: {"skip.html": Virtual("skip.html", "none")})
    asyncio.run(env.build(tmp_path / "out"))
    assert not (tmp_path / "out" / "skip.html").exists()


def test_views_receive_env_and_contents_in_locals(tmp_path):
    env = create_env(tmp_path, locals={"site": "demo"})
    seen = {}

    async def capture(env, content, locals, contents, templates):
        seen.update(locals)
        return io.BytesIO(b"streamed")

    env.register_view("capture", capture)
    env.register_generator("pages", lambda contents: {"a.txt": Virtual("a.txt", "capture")})
    result = asyncio.run(env.build(tmp_path / "out"))

    assert (tmp_path / "out" / "a.txt").read_bytes() == b"streamed"
    assert seen["site"] == "demo"
    assert seen["env"] is env
    assert seen["contents"] is result.contents
    assert "env" not in env.locals


def test_invalid_view_result_is_a_contract_error(tmp_path):
    env = create_env(tmp_path)
    env.register_generator("pages", lambda contents: {
        "bad.html": Virtual("bad.html", lambda *args: "not bytes"),
    })
    with pytest.raises(ViewContractError, match="bad.html"):
        asyncio.run(env.build(tmp_path / "out"))


def test_unknown_view_name(tmp_path):
    env = create_env(tmp_path)
    env.register_generator("pages", lambda contents: {"x.html": Virtual("x.html", "missing")})
    with pytest.raises(UnknownViewError, match="unknown view 'missing'"):
        asyncio.run(env.build(tmp_path / "out"))


def test_view_exceptions_name_the_content(tmp_path):
    env = create_env(tmp_path)

    def explode(*args):
        raise KeyError("title")

    content = Virtual("posts/x.html", explode)
    with pytest.raises(RenderError) as info:
        asyncio.run(render_view(env, content, {}, None, {}))
    assert info.value.path == "posts/x.html"


def test_file_sink_creates_directories_and_closes_streams(tmp_path):
    sink = FileSink(tmp_path / "out")
    stream = io.BytesIO(b"data")
    path = sink.write("deep/nested/file.bin", stream)
    assert path.read_bytes() == b"data"
    assert stream.closed
    assert sink.write("raw.txt", bytearray(b"raw")).read_bytes() == b"raw"


def test_is_stream():
    assert is_stream(io.BytesIO())
    assert not is_stream(io.StringIO())
    assert not is_stream(b"bytes")
