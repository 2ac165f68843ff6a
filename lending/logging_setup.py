"""Logging configuration for scripts and applications that host lending pools.

Library modules never configure logging themselves; they only do
`logger = logging.getLogger(__name__)`. Call configure_logging() once from
the entrypoint.
"""
from __future__ import annotations

import logging
from typing import Union

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(level: Union[int, str]) -> int:
    """Map an int or level name to a logging level; unknown names become INFO."""
    if isinstance(level, int):
        return level
    name = str(level).strip().upper()
    if name.isdigit():
        return int(name)
    mapping = {
        "CRITICAL": logging.CRITICAL,
        "FATAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }
    return mapping.get(name, logging.INFO)


def configure_logging(level: Union[int, str] = "INFO", fmt: str = DEFAULT_FORMAT) -> None:
    """Configure the root logger (call once from the entrypoint).

    Uses ``force=True`` so repeated calls replace handlers instead of
    stacking them.
    """
    logging.basicConfig(
        level=_coerce_level(level),
        format=fmt,
        datefmt=DEFAULT_DATEFMT,
        force=True,
    )
