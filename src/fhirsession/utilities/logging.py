"""Logging utilities for fhirsession."""

import logging
from collections.abc import Mapping
from typing import Any

from fhirsession.settings import ClientSettings, LogLevel

ROOT_LOGGER = "fhirsession"

SENSITIVE_KEYS = frozenset({"client_secret", "password", "access_token", "refresh_token", "id_token", "code"})


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the fhirsession namespace.

    Args:
        name: the name of the logger, which will be prefixed with 'fhirsession.'

    Returns:
        a configured logger instance
    """
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def _make_handler() -> logging.Handler:
    try:
        from rich.console import Console
        from rich.logging import RichHandler

        return RichHandler(console=Console(stderr=True), rich_tracebacks=True)
    except ImportError:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        return handler


def configure_logging(level: LogLevel | None = None) -> logging.Logger:
    """Send fhirsession's log records to stderr.

    Only the ``fhirsession`` logger is touched, so the host application's
    logging setup stays as it is. Calling this again replaces the handler
    installed by the previous call.

    Args:
        level: the log level to use; ``FHIRSESSION_LOG_LEVEL`` when omitted

    Returns:
        the ``fhirsession`` logger
    """
    if level is None:
        level = ClientSettings().log_level

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_fhirsession_handler", False):
            logger.removeHandler(handler)

    handler = _make_handler()
    setattr(handler, "_fhirsession_handler", True)
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def redact_sensitive_data(
    data: Mapping[str, Any] | None,
    sensitive_keys: set[str] | frozenset[str] | None = None,
) -> Mapping[str, Any] | None:
    """Return a shallow copy with sensitive values replaced by "***".

    Args:
        data: the mapping to redact, e.g. token endpoint form data
        sensitive_keys: keys to hide; defaults to the OAuth secrets
    """
    if data is None:
        return None
    keys = SENSITIVE_KEYS if sensitive_keys is None else sensitive_keys
    return {k: ("***" if k in keys and v is not None else v) for k, v in data.items()}
