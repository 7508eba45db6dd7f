from pathlib import Path

from click.testing import CliRunner

from stheno.cli import cli, parse_require
from stheno.environment import Environment


def create_site(tmp_path: Path) -> Path:
    site = tmp_path / "site"
    (site / "contents").mkdir(parents=True)
    (site / "templates").mkdir()
    (site / "templates" / "layout.html").write_text("<h1>{{ page.title }}</h1>{{ page.html }}", encoding="utf-8")
    (site / "contents" / "index.md").write_text(
        "---\ntitle: Welcome\ntemplate: layout.html\n---\nHello *there*.\n", encoding="utf-8"
    )
    (site / "contents" / "notes.tmp").write_text("scratch", encoding="utf-8")
    (site / "config.json").write_text('{"output": "./public"}', encoding="utf-8")
    return site


def test_cli_build_writes_site(tmp_path):
    site = create_site(tmp_path)
    runner = CliRunner()
    result = runner.invoke(cli, ["build", "-C", str(site), "-I", "*.tmp"])
    assert result.exit_code == 0, result.output
    index = (site / "public" / "index.html").read_text(encoding="utf-8")
    assert "<h1>Welcome</h1>" in index
    assert "<em>there</em>" in index
    assert not (site / "public" / "notes.tmp").exists()
    assert "done in" in result.output


def test_cli_build_output_override_and_clean(tmp_path):
    site = create_site(tmp_path)
    out = tmp_path / "out"
    out.mkdir()
    (out / "stale.html").write_text("old", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "-C", str(site), "-o", str(out)])
    assert result.exit_code == 0, result.output
    assert (out / "stale.html").exists()

    result = runner.invoke(cli, ["build", "-C", str(site), "-o", str(out), "--clean"])
    assert result.exit_code == 0, result.output
    assert not (out / "stale.html").exists()
    assert (out / "index.html").exists()


def test_cli_build_reports_errors(tmp_path):
    site = create_site(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["build", "-C", str(site), "-i", "missing"])
    assert result.exit_code == 1
    assert "contents path invalid" in result.output

    (site / "contents" / "index.md").write_text(
        "---\ntemplate: nope.html\n---\nx\n", encoding="utf-8"
    )
    result = runner.invoke(cli, ["build", "-C", str(site)])
    assert result.exit_code == 1
    assert "unknown template 'nope.html'" in result.output

    (site / "config.json").write_text("{broken", encoding="utf-8")
    result = runner.invoke(cli, ["build", "-C", str(site)])
    assert result.exit_code == 1
    assert "parsing config.json" in result.output


def test_cli_preview_applies_overrides(monkeypatch, tmp_path):
    site = create_site(tmp_path)
    called = {}

    def fake_preview(self):
        called["port"] = self.config.port
        called["hostname"] = self.config.hostname
        called["overrides"] = dict(self.config.cli_overrides)
        called["plugins"] = self.config.plugins

    monkeypatch.setattr(Environment, "preview", fake_preview)
    runner = CliRunner()
    result = runner.invoke(
        cli,
        ["preview", "-C", str(site), "-p", "5055", "-H", "127.0.0.1", "-P", "stheno.plugins.paginator"],
    )
    assert result.exit_code == 0, result.output
    assert called["port"] == 5055
    assert called["hostname"] == "127.0.0.1"
    assert called["plugins"] == ["stheno.plugins.paginator"]
    assert called["overrides"] == {
        "port": 5055,
        "hostname": "127.0.0.1",
        "plugins": ["stheno.plugins.paginator"],
    }


def test_parse_require():
    assert parse_require(None) is None
    assert parse_require("util:./lib/util.py, ./helpers/") == {
        "util": "./lib/util.py",
        "helpers": "./helpers/",
    }


def test_cli_build_reports_generator_failures(tmp_path):
    site = create_site(tmp_path)
    (site / "plugins").mkdir()
    (site / "plugins" / "broken.py").write_text(
        "def explode(contents):\n"
        "    raise KeyError('missing')\n"
        "\n"
        "\n"
        "def setup(env):\n"
        "    env.register_generator('broken', explode)\n",
        encoding="utf-8",
    )
    runner = CliRunner()
    result = runner.invoke(cli, ["build", "-C", str(site), "-P", "./plugins/broken.py"])
    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Error:" in result.output
    assert "generator 'explode' failed" in result.output
