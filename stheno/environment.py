"""The Stheno environment.

The Environment is the object plugins receive. It holds the configuration,
the plugin registry, the loaded modules and the template locals, and it is
the entry point for loading a site, building it and previewing it.

Key classes:
- Environment: Runtime state shared by every component.
- LoadResult: Contents, templates and locals produced by ``Environment.load``.
- BuildResult: Outcome of ``Environment.build``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any

from . import utils
from .builder import build_tree
from .config import Config
from .content import ContentPlugin, ContentTree, StaticFile
from .errors import ConfigParseError, PluginLoadError
from .generator import run_generators
from .modules import ModuleRegistry
from .registry import PluginRegistry
from .renderer import FileSink, render
from .templates import TemplatePlugin, load_templates

logger = logging.getLogger(__name__)

DEFAULT_PLUGINS = [
    "stheno.plugins.page",
    "stheno.plugins.jinja",
    "stheno.plugins.markdown",
]


@dataclass
class LoadResult:
    """Everything needed to render a site.

    Attributes:
        contents: Content tree with generated content merged in.
        templates: Loaded templates by relative path.
        locals: Template context shared by every view.
    """

    contents: ContentTree
    templates: dict[str, TemplatePlugin]
    locals: dict[str, Any]


@dataclass
class BuildResult:
    """Result of a build.

    Attributes:
        contents: The rendered content tree.
        output_dir: Directory the site was written to.
        written: Files written, in completion order.
    """

    contents: ContentTree
    output_dir: Path
    written: list[Path]


class Environment:
    """Runtime state for one site.

    Attributes:
        work_dir: Directory relative config paths are resolved against.
        config: Active configuration.
        registry: Handlers, views and generators registered by plugins.
        modules: Modules loaded for plugins, views and locals.
        plugins: Handler classes by name, for plugins that extend each other.
        helpers: Functions plugins share with each other and with templates.
        locals: Template context.
        mode: "build" or "preview" once one of those has started.
    """

    # exposed so plugins can subclass without importing stheno internals
    ContentPlugin = ContentPlugin
    ContentTree = ContentTree
    TemplatePlugin = TemplatePlugin
    utils = utils

    def __init__(self, config: Config, work_dir: Path):
        self.work_dir = Path(work_dir).resolve()
        self.modules = ModuleRegistry(self.work_dir)
        self.mode: str | None = None
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self.set_config(config)
        self.reset()

    @classmethod
    def create(
        cls,
        config: Config | dict[str, Any] | str | Path | None = None,
        work_dir: Path | str | None = None,
    ) -> Environment:
        """Create an environment from a config object, mapping or file path.

        A file path also sets the default working directory to the file's
        directory; otherwise the current directory is used.
        """
        if isinstance(config, (str, Path)):
            path = Path(config)
            work_dir = work_dir if work_dir is not None else path.parent
            config = Config.from_file(path)
        elif not isinstance(config, Config):
            config = Config(config)
        return cls(config, Path(work_dir) if work_dir is not None else Path.cwd())

    def reset(self) -> None:
        """Drop every registration and loaded module and reload the locals."""
        self.registry = PluginRegistry()
        self.plugins: dict[str, type] = {"StaticFile": StaticFile}
        self.helpers: dict[str, Any] = {}
        self.modules.reset()
        self.setup_locals()

    def set_config(self, config: Config) -> None:
        self.config = config
        self.contents_path = self.resolve_path(config.contents)
        self.templates_path = self.resolve_path(config.templates)

    def setup_locals(self) -> None:
        """Build the template locals from config ``locals`` and ``require``.

        Raises:
            ConfigParseError: If ``locals`` names a JSON file that cannot be read.
        """
        configured = self.config.locals
        if isinstance(configured, str):
            filename = self.resolve_path(configured)
            logger.debug("loading locals from: %s", filename)
            try:
                loaded = utils.read_json(filename)
            except (OSError, ValueError) as exc:
                raise ConfigParseError(f"unable to load locals: {exc}") from exc
            self.locals = dict(loaded) if isinstance(loaded, dict) else {}
        else:
            self.locals = dict(configured or {})

        for alias, identifier in (self.config.require or {}).items():
            logger.debug("loading module '%s' available in locals as '%s'", identifier, alias)
            if alias in self.locals:
                logger.warning(
                    "module '%s' overwrites previous local with the same key ('%s')",
                    identifier,
                    alias,
                )
            try:
                self.locals[alias] = self.load_module(identifier)
            except Exception as exc:
                logger.warning("unable to load '%s': %s", identifier, exc)

    # paths

    def resolve_path(self, pathname: str | Path | None) -> Path:
        return (self.work_dir / (pathname or "")).resolve()

    def relative_path(self, pathname: str | Path) -> str:
        return Path(os.path.relpath(pathname, self.work_dir)).as_posix()

    def relative_contents_path(self, pathname: str | Path) -> str:
        return Path(os.path.relpath(pathname, self.contents_path)).as_posix()

    # registration

    @property
    def views(self) -> dict[str, Callable[..., Any]]:
        return self.registry.views

    @property
    def generators(self):
        return self.registry.generators

    def register_content_plugin(self, group: str, pattern: str, plugin: type[ContentPlugin]) -> None:
        self.plugins[plugin.__name__] = plugin
        self.registry.register_content(group, pattern, plugin)

    def register_template_plugin(self, pattern: str, plugin: type[TemplatePlugin]) -> None:
        self.plugins[plugin.__name__] = plugin
        self.registry.register_template(pattern, plugin)

    def register_generator(self, group: str, generator: Callable[..., Any]) -> None:
        self.registry.register_generator(group, generator)

    def register_view(self, name: str, view: Callable[..., Any]) -> None:
        self.registry.register_view(name, view)

    def content_groups(self) -> list[str]:
        return self.registry.content_groups()

    # modules

    def load_module(self, identifier: str, fresh: bool = False) -> ModuleType:
        """Load a module by dotted name or by path relative to the work directory."""
        return self.modules.load(identifier, fresh=fresh)

    def load_plugin_module(self, module: str | ModuleType | Callable[..., Any]) -> None:
        """Load a plugin and let it register its handlers.

        Args:
            module: Module identifier, module object exposing ``setup(env)``,
                or the setup callable itself.

        Raises:
            PluginLoadError: If the module cannot be loaded or its setup fails.
        """
        identifier = module if isinstance(module, str) else getattr(module, "__name__", "unknown")
        try:
            if isinstance(module, str):
                module = self.load_module(module)
            setup = getattr(module, "setup", None) if isinstance(module, ModuleType) else module
            if not callable(setup):
                raise PluginLoadError("plugin has no setup(env) function")
            setup(self)
        except PluginLoadError as exc:
            raise PluginLoadError(f"Error loading plugin '{identifier}': {exc.message}") from exc
        except Exception as exc:
            raise PluginLoadError(f"Error loading plugin '{identifier}': {exc}") from exc

    def load_plugins(self) -> None:
        """Load the default plugins, then the configured ones, in order."""
        for plugin in DEFAULT_PLUGINS:
            logger.debug("loading default plugin: %s", plugin)
            self.load_plugin_module(plugin)
        for plugin in self.config.plugins or []:
            logger.debug("loading plugin: %s", plugin)
            self.load_plugin_module(plugin)

    def load_view_module(self, identifier: str) -> None:
        """Load a view module and register its ``view`` under the file's stem.

        Raises:
            PluginLoadError: If the module fails to load or has no ``view``.
        """
        logger.debug("loading view: %s", identifier)
        try:
            module = self.load_module(identifier, fresh=True)
            view = getattr(module, "view", None)
            if not callable(view):
                raise PluginLoadError("module has no view function")
        except PluginLoadError as exc:
            raise PluginLoadError(f"Error loading view '{identifier}': {exc.message}") from exc
        except Exception as exc:
            raise PluginLoadError(f"Error loading view '{identifier}': {exc}") from exc
        self.register_view(Path(identifier).stem, view)

    def load_views(self) -> None:
        """Load every module in the configured view directory, if one is set."""
        if self.config.views is None:
            return
        directory = self.resolve_path(self.config.views)
        try:
            filenames = sorted(os.listdir(directory))
        except OSError as exc:
            raise PluginLoadError(f"Error loading views from '{directory}': {exc}") from exc
        for filename in filenames:
            if filename.endswith(".py") and not filename.startswith("_"):
                self.load_view_module(f"{self.config.views}/{filename}")

    # events

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener(*args)

    # loading

    async def get_contents(self) -> ContentTree:
        """Build the content tree and merge in generated content."""
        contents = await build_tree(self)
        return await run_generators(self, contents)

    async def get_templates(self) -> dict[str, TemplatePlugin]:
        return await load_templates(self)

    def get_locals(self) -> dict[str, Any]:
        return self.locals

    async def load(self) -> LoadResult:
        """Load plugins and views, then contents and templates."""
        self.load_plugins()
        self.load_views()
        contents, templates = await asyncio.gather(self.get_contents(), self.get_templates())
        return LoadResult(contents=contents, templates=templates, locals=self.get_locals())

    async def build(self, output_dir: Path | None = None) -> BuildResult:
        """Load the site and render it to ``output_dir`` (config ``output`` by default)."""
        self.mode = "build"
        output_dir = Path(output_dir) if output_dir is not None else self.resolve_path(self.config.output)
        result = await self.load()
        written = await render(self, result.contents, result.templates, result.locals, FileSink(output_dir))
        return BuildResult(contents=result.contents, output_dir=output_dir, written=written)

    def preview(self) -> None:  # pragma: no cover - integration path
        """Run the preview server until interrupted."""
        from .server import PreviewServer

        self.mode = "preview"
        PreviewServer(self).run()
