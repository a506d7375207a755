"""Logging setup for vstack-provider.

The library only ever attaches a NullHandler; output is opt-in through
configure_logging().  VSTACK_PROVIDER_LOG_LEVEL sets the initial level.

Reconcilers pass the resource they act on through ``extra`` (vm_id,
port_id, slot, vdc_id).  The configured handler appends those as a
bracketed suffix:

    INFO [2026-02-25 10:02:54] vstack_provider.disks - Removing disk slot 3 [vm_id=42 slot=3]
"""

import logging
import os

import click

LIBRARY_LOGGER_NAME: str = "vstack_provider"

CONTEXT_FIELDS: tuple[str, ...] = ("vm_id", "port_id", "slot", "vdc_id")

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = logging.getLevelNamesMapping().get(os.environ.get("VSTACK_PROVIDER_LOG_LEVEL", "").strip().upper())
if _env_level:  # excludes NOTSET and unknown names
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _ContextFormatter(logging.Formatter):
    """Appends the resource identifiers a record carries."""

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802
        message = super().formatMessage(record)
        pairs = [f"{name}={getattr(record, name)}" for name in CONTEXT_FIELDS if hasattr(record, name)]
        if not pairs:
            return message
        return f"{message} [{' '.join(pairs)}]"


class _ClickHandler(logging.Handler):
    """Writes records to stderr via click.echo, red from ERROR up.

    click strips the styling when stderr is not a TTY.
    """

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(_ContextFormatter(fmt=_FMT, datefmt=_DATEFMT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            style = {"fg": "red"} if record.levelno >= logging.ERROR else {"dim": True}
            click.echo(click.style(msg, **style), err=True)
        except Exception:  # noqa: BLE001
            self.handleError(record)


def get_logger(name: str) -> logging.Logger:
    """Module logger; vstack_provider modules pass __name__ so records stay under LIBRARY_LOGGER_NAME."""
    return logging.getLogger(name)


def configure_logging(*, level: int | str | None = None, quiet: bool = False) -> None:
    """Send library records to stderr.

    Idempotent: at most one handler is attached.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides the env var.
        quiet: Log errors only. Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _ClickHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_ClickHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
