"""Error hierarchy for Stheno.

All stheno-specific errors inherit from SthenoError so callers can catch the
whole family at once. Errors raised while handling a specific file carry the
offending path, which is prefixed to the message.
"""

from __future__ import annotations


class SthenoError(Exception):
    """Base error for all stheno operations.

    Attributes:
        message: Human-readable error message.
        path: Relative path of the file that caused the error, if any.
    """

    def __init__(self, message: str, path: str | None = None):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class ScanError(SthenoError):
    """I/O or handler failure while building a content or template tree."""


class MergeError(SthenoError):
    """Malformed generator output."""


class GeneratorError(SthenoError):
    """A generator raised while producing content."""


class UnknownViewError(SthenoError):
    """A content node names a view that was never registered."""


class UnknownTemplateError(SthenoError):
    """A content node names a template that was never loaded."""


class ViewContractError(SthenoError):
    """A view returned something other than nothing, bytes or a stream."""


class RenderError(SthenoError):
    """A view raised while rendering a content node."""


class PluginLoadError(SthenoError):
    """A plugin or view module failed to load or register."""


class ConfigParseError(SthenoError):
    """The configuration file is missing or malformed."""
