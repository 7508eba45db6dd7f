"""Console logging for Stheno.

Every module logs through ``logging.getLogger(__name__)``, which places it
under the ``stheno`` namespace. ``configure`` installs a single ``CliHandler``
on that namespace that writes click-styled lines to the terminal.
"""

from __future__ import annotations

import logging

import click

NAMESPACE = "stheno"

_LEVEL_COLORS = {
    logging.WARNING: "yellow",
    logging.DEBUG: "bright_black",
}


class CliHandler(logging.Handler):
    """Writes log records as indented, colored terminal lines.

    Errors go to stderr in red, with the traceback when ``verbose`` is set.
    Other records go to stdout; non-info records are prefixed with their level
    name. ``quiet`` suppresses everything except errors.
    """

    def __init__(self, verbose: bool = False, quiet: bool = False):
        super().__init__(logging.DEBUG if verbose else logging.INFO)
        self.verbose = verbose
        self.quiet = quiet

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
            if record.levelno >= logging.ERROR:
                click.echo(f"\n  {click.style('error', fg='red')} {message}", err=True)
                if self.verbose and record.exc_info:
                    click.echo(self.formatException(record.exc_info) + "\n", err=True)
                else:
                    click.echo("", err=True)
                return
            if self.quiet:
                return
            if record.levelno != logging.INFO:
                color = _LEVEL_COLORS.get(record.levelno, "bright_black")
                level = record.levelname.lower()
                message = f"{click.style(level, fg=color)} {message}"
            click.echo(f"  {message}")
        except Exception:  # pragma: no cover - mirrors logging.Handler
            self.handleError(record)

    def formatException(self, exc_info) -> str:
        return logging.Formatter().formatException(exc_info)


def configure(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Install the CLI handler on the ``stheno`` logger.

    Calling this again replaces the previous handler, so the CLI can
    reconfigure verbosity per invocation.

    Args:
        verbose: Show debug records and error tracebacks.
        quiet: Only show errors.

    Returns:
        The configured namespace logger.
    """
    logger = logging.getLogger(NAMESPACE)
    for handler in list(logger.handlers):
        if isinstance(handler, CliHandler):
            logger.removeHandler(handler)
    logger.addHandler(CliHandler(verbose=verbose, quiet=quiet))
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger
