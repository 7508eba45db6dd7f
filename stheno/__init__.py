"""Stheno static site generator.

Builds a tree of content nodes from a contents directory, lets plugins turn
files into content and add generated content, and renders every node through
its view, either all at once into an output directory or on request from a
live-reloading preview server.
"""

from .config import Config
from .environment import Environment

__all__ = ["Config", "Environment", "__version__", "create"]
__version__ = "0.1.0"


def create(config=None, work_dir=None) -> Environment:
    """Create an environment from a config object, mapping or file path."""
    return Environment.create(config, work_dir)
