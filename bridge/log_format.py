# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: console logging for MemCap. memory ids, content hashes, counts and ✓ marks get colored so a busy
ingestion log stays readable. every memcap.* logger gets one handler and stops propagating, so messages are
printed once even when the root logger is configured by something else (waitress, pytest).
"""

from __future__ import annotations

import logging
import re

from colorama import init as _colorama_init

LOGGER_NAMES = ("memcap.store", "memcap.ingest", "memcap.agent", "memcap.bridge")

# ANSI color codes
_PURPLE = "\x1b[35m"
_GOLDEN = "\x1b[33m"
_GREEN = "\x1b[32m"
_RED = "\x1b[31m"
_CYAN = "\x1b[36m"
_RESET = "\x1b[0m"

# (pattern, replacement) pairs, applied in order
_PATTERNS = [
    (re.compile(r"\b(mem_[0-9a-z]+)\b"), _PURPLE + r"\1" + _RESET),  # record ids
    (re.compile(r"(hash: )([0-9a-z]+)"), r"\1" + _GOLDEN + r"\2" + _RESET),  # "hash: 1x2y3z"
    (re.compile(r"(✓|✅)"), _GREEN + r"\1" + _RESET),
    (re.compile(r"(❌)"), _RED + r"\1" + _RESET),
    (re.compile(r"(MemCap)"), _CYAN + r"\1" + _RESET),
]


class ColoredMemoryFormatter(logging.Formatter):
    """colors record ids, hashes and status marks; warnings and errors get a level prefix."""

    def __init__(self, *args, use_color: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color
        if use_color:
            _colorama_init()  # enable ANSI codes on Windows terminals

    def format(self, record):
        msg = super().format(record)
        if record.levelno >= logging.WARNING:
            msg = f"[{record.levelname}] {msg}"
        if not self.use_color:
            return msg
        for pattern, replacement in _PATTERNS:
            msg = pattern.sub(replacement, msg)
        if record.levelno >= logging.ERROR:
            msg = _RED + msg + _RESET
        return msg


def setup_logging(level: str | int = "INFO", use_color: bool = True) -> None:
    """attach the colored handler to every memcap logger (idempotent) and quiet the web server."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        if not any(getattr(h, "_memcap", False) for h in logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(ColoredMemoryFormatter("%(message)s", use_color=use_color))
            handler._memcap = True  # type: ignore[attr-defined]
            logger.addHandler(handler)
        logger.propagate = False  # prevent duplicate messages

    # silence waitress web server log messages so the console stays clean
    logging.getLogger("waitress").setLevel(logging.ERROR)
    logging.getLogger("waitress.queue").setLevel(logging.CRITICAL)
