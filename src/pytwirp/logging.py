"""Diagnostics for the plugin process.

protoc reads the CodeGeneratorResponse from stdout, so every record goes to
stderr (or the stream handed to :func:`configure_logging`).
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

ROOT_LOGGER = "pytwirp"

_FORMAT = "protoc-gen-pytwirp: %(levelname)s %(name)s: %(message)s"


class _PluginHandler(logging.StreamHandler):
    pass


def get_logger(component: str | None = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}" if component else ROOT_LOGGER)


def parse_level(value: str) -> int:
    """``debug``, ``INFO``, ``10``...; anything unrecognised means WARNING."""
    text = value.strip()
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text.upper())
    return level if isinstance(level, int) else logging.WARNING


def configure_logging(*, level: str = "WARNING", stream: TextIO | None = None) -> logging.Logger:
    root = get_logger()
    root.setLevel(parse_level(level))
    root.propagate = False

    # Only replace handlers installed here; anything a host application added stays.
    for handler in [h for h in root.handlers if isinstance(h, _PluginHandler)]:
        root.removeHandler(handler)
        handler.close()

    handler = _PluginHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    return root


__all__ = ["ROOT_LOGGER", "configure_logging", "get_logger", "parse_level"]
