"""
FlowStudio logging.

Everything logs under the ``flowstudio`` logger. Level, verbosity and the
optional log file come from Settings (``FLOWSTUDIO_LOG_LEVEL``,
``FLOWSTUDIO_LOG_VERBOSE``, ``FLOWSTUDIO_LOG_FILE``) unless passed in.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from .config import get_settings

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
VERBOSE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(funcName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "flowstudio"

_configured = False


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelName(level.upper())


def setup_logging(
    level: Optional[Union[str, int]] = None,
    log_file: Optional[Union[str, Path]] = None,
    verbose: Optional[bool] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    (Re)configure the ``flowstudio`` logger tree.

    Arguments left as None are taken from Settings. Handlers from an
    earlier call are replaced.
    """
    global _configured

    settings = get_settings()
    level = _resolve_level(level if level is not None else settings.log_level)
    log_file = log_file if log_file is not None else settings.log_file
    verbose = settings.log_verbose if verbose is None else verbose

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(VERBOSE_FORMAT if verbose else DEFAULT_FORMAT, datefmt=DATE_FORMAT)
    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    _configured = True
    root_logger.debug(f"Logging configured: level={logging.getLevelName(level)} verbose={verbose}")
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under ``flowstudio``, configuring from Settings on first use."""
    if not _configured:
        setup_logging()

    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
