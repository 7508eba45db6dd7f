"""Site configuration for Stheno.

Configuration is read from a JSON (or YAML) file and merged over
``DEFAULT_CONFIG``. Keys not listed in the defaults are kept so plugins can
read their own options through ``Config.get``. Values given on the command
line are recorded as overrides and reapplied whenever the file is reloaded.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigParseError

DEFAULT_CONFIG: dict[str, Any] = {
    "contents": "./contents",
    "templates": "./templates",
    "views": None,
    "output": "./build",
    "base_url": "/",
    "hostname": None,
    "port": 8080,
    "ignore": [],
    "locals": {},
    "plugins": [],
    "require": {},
    "file_limit": 40,
    "restart_on_conf_change": True,
    "livereload": True,
    "ws_port": None,
}


class Config:
    """Configuration values with defaults applied.

    Every key of the loaded options becomes an attribute, so plugins can use
    ``config.paginator`` as well as ``config.get("paginator", {})``.

    Attributes:
        filename: Path of the file this config was read from, if any.
        cli_overrides: Values supplied on the command line.
    """

    def __init__(self, options: dict[str, Any] | None = None, filename: Path | None = None):
        self.filename = filename
        self.cli_overrides: dict[str, Any] = {}
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in (options or {}).items():
            if value is not None or key not in DEFAULT_CONFIG:
                merged[key] = value
        self._options = merged

    def __getattr__(self, name: str) -> Any:
        options = self.__dict__.get("_options", {})
        if name in options:
            return options[name]
        raise AttributeError(name)

    def get(self, name: str, default: Any = None) -> Any:
        return self._options.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._options)

    def apply_overrides(self, overrides: dict[str, Any]) -> None:
        """Apply command-line values on top of the loaded options.

        Args:
            overrides: Values to apply. ``None`` values are skipped.
        """
        for key, value in overrides.items():
            if value is None:
                continue
            self._options[key] = value
            self.cli_overrides[key] = value

    @classmethod
    def from_file(cls, path: Path) -> Config:
        """Load configuration from a file.

        Args:
            path: Path to a JSON or YAML config file.

        Returns:
            Config with defaults applied.

        Raises:
            ConfigParseError: If the file is missing, unparsable or not a mapping.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigParseError(f"Config file at '{path}' does not exist.")
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigParseError(f"parsing {path.name}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigParseError(f"parsing {path.name}: expected an object at top level")
        return cls(loaded, filename=path)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"Config({self._options!r})"
