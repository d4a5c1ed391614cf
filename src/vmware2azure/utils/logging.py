"""Structured logging for vmware2azure."""

from __future__ import annotations

import logging

from rich.logging import RichHandler


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_path=False,
            markup=True,
            rich_tracebacks=True,
        )
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter("%(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger


def set_log_level(level: str) -> None:
    """Set log level (DEBUG, INFO, WARNING, ERROR) on every vmware2azure logger."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.getLogger("vmware2azure").setLevel(numeric)
    for name, logger in logging.root.manager.loggerDict.items():
        if name.startswith("vmware2azure.") and isinstance(logger, logging.Logger):
            logger.setLevel(numeric)
