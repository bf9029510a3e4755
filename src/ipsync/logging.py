"""Logging setup for the ipsync commands.

Every module logs under the ``ipsync`` tree (``ipsync.auth``,
``ipsync.reconciler``, ...) and records carry that name, so a verifier
rejection can be told apart from a reconciliation event::

    2026-03-14 15:09:26 [DEBUG] ipsync.auth: Rejected: malformed timestamp
    2026-03-14 15:09:27 [INFO] ipsync.reconciler: Reconciled peer address

Rejection reasons are only logged at DEBUG, which ``--verbose`` enables
regardless of the configured level.
"""

import logging
from pathlib import Path
from typing import Optional

from ipsync.config import Config

LOGGER_NAME = "ipsync"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_root: Optional[logging.Logger] = None


def resolve_level(config: Config, verbose: bool = False) -> int:
    """Effective level: DEBUG when verbose, else the configured level.

    Unknown level names fall back to INFO.
    """
    if verbose:
        return logging.DEBUG
    level = logging.getLevelName(config.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(config: Config) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    return handlers


def setup_logging(config: Config, verbose: bool = False) -> logging.Logger:
    """Configure the ``ipsync`` logger.

    Handlers are attached on the first call only. A later call with
    ``verbose`` still lowers the level to DEBUG.

    Args:
        config: Supplies the level and optional log file.
        verbose: Force DEBUG output.

    Returns:
        The ``ipsync`` logger.
    """
    global _root

    if _root is not None:
        if verbose:
            _root.setLevel(logging.DEBUG)
        return _root

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(resolve_level(config, verbose))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _build_handlers(config):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False

    _root = logger
    return logger


def reset_logging() -> None:
    """Detach handlers and forget the configured logger. Used for testing."""
    global _root
    if _root is not None:
        for handler in _root.handlers:
            handler.close()
        _root.handlers.clear()
        _root.setLevel(logging.NOTSET)
        _root.propagate = True
        _root = None
