"""
Logging utility for the command assistant.

All loggers live under one "assistant" namespace (assistant.dispatcher,
assistant.module.email, ...). The namespace root owns the only handler, so
LOG_LEVEL and the format are applied once for the whole process.
"""

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "assistant"
DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _level_from_env() -> int:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def setup_logger(level: Optional[int] = None, format_string: Optional[str] = None) -> logging.Logger:
    """
    Configure the namespace root logger (idempotent).

    Args:
        level: Logging level (default: LOG_LEVEL env var, else INFO)
        format_string: Custom format string (optional)

    Returns:
        The "assistant" root logger
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.handlers:
        if level is not None:
            root.setLevel(level)
        return root

    root.setLevel(level if level is not None else _level_from_env())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)
    return root


def get_logger(name: str = "") -> logging.Logger:
    """
    Get a logger inside the assistant namespace.

    Args:
        name: Component name, e.g. "dispatcher" or "module.email"

    Returns:
        Logger instance
    """
    setup_logger()
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
