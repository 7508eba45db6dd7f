"""Command-line interface for Stheno.

Commands:
- build: Render the site into the output directory.
- preview: Serve the site, rendering pages on request and reloading on change.

Both commands accept the common options that locate the site and override
config values. Values given on the command line win over the config file and
keep winning when the preview server reloads the file.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import shutil
import time
from pathlib import Path
from typing import Any

import click

from . import __version__
from .config import Config
from .environment import Environment
from .errors import SthenoError
from .logger import configure

logger = logging.getLogger(__name__)


def _split(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_require(value: str | None) -> dict[str, str] | None:
    """Parse ``alias:module`` pairs; a bare module is aliased by its last path segment."""
    items = _split(value)
    if items is None:
        return None
    requires: dict[str, str] = {}
    for item in items:
        alias, sep, module = item.partition(":")
        if not sep:
            module = alias
            alias = module.rstrip("/").split("/")[-1]
        requires[alias] = module
    return requires


def common_options(fn):
    """Options shared by every command that loads a site."""
    options = [
        click.option("-C", "--chdir", type=click.Path(file_okay=False), help="Change the working directory."),
        click.option("-c", "--config", "config_path", default="config.json", show_default=True, help="Config file to use."),
        click.option("-i", "--contents", help="Contents location (default ./contents)."),
        click.option("-t", "--templates", help="Template location (default ./templates)."),
        click.option("-L", "--locals", "locals_path", help="Optional path to a JSON file with template context data."),
        click.option("-R", "--require", help="Comma separated list of modules to add to the template context."),
        click.option("-P", "--plugins", help="Comma separated list of modules to load as plugins."),
        click.option("-I", "--ignore", help="Comma separated list of files and glob patterns to ignore."),
        click.option("-v", "--verbose", is_flag=True, help="Show debug information."),
        click.option("-q", "--quiet", is_flag=True, help="Only output errors."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def load_env(
    chdir: str | None,
    config_path: str,
    overrides: dict[str, Any],
) -> Environment:
    """Create the environment for a command.

    Args:
        chdir: Working directory; defaults to the current directory.
        config_path: Config file, relative to the working directory.
        overrides: Command-line values; None values are ignored.

    Raises:
        SthenoError: If the config cannot be read or the contents or templates
            directory does not exist.
    """
    work_dir = Path(chdir or Path.cwd()).resolve()
    logger.debug("creating environment - work directory: %s", work_dir)
    path = work_dir / config_path
    if path.exists():
        logger.info("using config file: %s", path)
        config = Config.from_file(path)
    else:
        logger.debug("no config file found")
        config = Config()
    config.apply_overrides(overrides)
    logger.debug("config: %s", config.as_dict())
    env = Environment(config, work_dir)
    for name in ("contents", "templates"):
        resolved = env.resolve_path(config.get(name))
        if not resolved.exists():
            raise SthenoError(f"{name} path invalid ({resolved})")
    return env


def _common_overrides(contents, templates, locals_path, require, plugins, ignore) -> dict[str, Any]:
    return {
        "contents": contents,
        "templates": templates,
        "locals": locals_path,
        "require": parse_require(require),
        "plugins": _split(plugins),
        "ignore": _split(ignore),
    }


def _fail(exc: Exception) -> None:
    logger.debug("%s", exc, exc_info=exc)
    click.echo(click.style("Error:", fg="red", bold=True) + f" {exc}", err=True)
    raise SystemExit(1) from None


def handle_errors(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (SthenoError, OSError) as exc:
            _fail(exc)

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="stheno")
def cli():
    """Stheno static site generator."""


@cli.command()
@click.option("-o", "--output", help="Directory to write build output to (default ./build).")
@click.option("-X", "--clean", is_flag=True, help="Delete the output directory before building.")
@common_options
@handle_errors
def build(output, clean, chdir, config_path, contents, templates, locals_path, require, plugins, ignore, verbose, quiet):
    """Build the site into the output directory."""
    configure(verbose=verbose, quiet=quiet)
    start = time.monotonic()
    logger.info("building site")
    overrides = _common_overrides(contents, templates, locals_path, require, plugins, ignore)
    overrides["output"] = output
    env = load_env(chdir, config_path, overrides)

    output_dir = env.resolve_path(env.config.output)
    if output_dir.exists() and clean:
        logger.debug("cleaning %s", output_dir)
        shutil.rmtree(output_dir)
    if not output_dir.exists():
        logger.debug("creating output directory %s", output_dir)
        output_dir.mkdir(parents=True)

    asyncio.run(env.build(output_dir))
    elapsed = round((time.monotonic() - start) * 1000)
    logger.info("done in %s ms\n", click.style(str(elapsed), bold=True))


@cli.command()
@click.option("-p", "--port", type=int, help="Port to run the preview server on (default 8080).")
@click.option("-H", "--hostname", help="Host to bind the server to (default all interfaces).")
@common_options
@handle_errors
def preview(port, hostname, chdir, config_path, contents, templates, locals_path, require, plugins, ignore, verbose, quiet):
    """Serve the site, rendering on request and reloading on change."""
    configure(verbose=verbose, quiet=quiet)
    logger.info("starting preview server")
    overrides = _common_overrides(contents, templates, locals_path, require, plugins, ignore)
    overrides["port"] = port
    overrides["hostname"] = hostname
    env = load_env(chdir, config_path, overrides)
    env.preview()


def main():
    """Entry point for the CLI application."""
    cli()
