"""
Logging utilities.

Every module logs through ``logging.getLogger(__name__)``, so all toolkit
messages land under the ``causal_mr`` logger. Configuring that one logger
with `setup_logger` covers harmonisation, filtering and estimation.
"""

import sys
import logging
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER = "causal_mr"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level: {level}")
    return resolved


def setup_logger(
    name: str = ROOT_LOGGER,
    log_file: Optional[str] = None,
    level: Union[str, int] = "INFO",
    format_str: Optional[str] = None,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure the toolkit logger with a console and an optional file handler.

    Calling it again replaces (and closes) the handlers from the previous
    call, so notebooks and batch scripts can reconfigure freely.

    Parameters
    ----------
    name : str
        Logger to configure. Defaults to the package root; names outside
        the ``causal_mr`` namespace are prefixed with it.
    log_file : str, optional
        Also write messages to this file; parent directories are created.
    level : str or int
        Logging level, by name ('DEBUG' shows per-variant exclusions) or value.
    format_str : str, optional
        Log message format.
    propagate : bool
        Pass records on to the application's root logger as well. Off by
        default so messages are not printed twice when the application
        configures logging itself.

    Returns
    -------
    logging.Logger
    """
    logger = get_logger(name)
    logger.setLevel(_resolve_level(level))
    logger.propagate = propagate

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    formatter = logging.Formatter(format_str or DEFAULT_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger inside the package namespace."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
