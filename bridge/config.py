# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: configuration loader for the MemCap bridge and agent. loads settings from a JSON file and environment
      variables, with sensible defaults. handles PyInstaller frozen executables by detecting the base
      directory correctly. returns a frozen Config dataclass with the paths and settings everything needs.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "MEMCAP_"


# figure out where the app is running from (handles PyInstaller bundles)
def _resolve_base_dir() -> Path:
    import sys

    # if we are frozen (PyInstaller), use the executable's directory
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    # otherwise, go up one level from this file (bridge/config.py -> project root)
    return Path(__file__).resolve().parents[1]


# frozen dataclass to hold all config values (immutable once created)
@dataclass(frozen=True)
class Config:
    base_dir: Path  # root directory of the project
    memories_path: Path  # JSON array file backing the memory store
    host: str  # web server host address
    port: int  # web server port number
    default_limit: int  # search results when the caller gives no limit
    max_limit: int  # hard cap on the search limit a caller may ask for
    preview_chars: int  # characters kept in content previews
    server_url: str  # where the scanning agent sends blocks
    request_timeout_sec: float  # agent HTTP timeout per request
    log_level: str  # logging level name for memcap loggers


# get a config value with priority: environment variable > JSON file > default
def _get(obj: dict, key: str, default):
    # check for environment variable first (MEMCAP_* prefix)
    env = os.getenv(f"{ENV_PREFIX}{key.upper()}")
    if env is not None:
        # try to coerce to float/int when default is numeric (bool is never used as a default)
        if isinstance(default, float):
            try:
                return float(env)
            except ValueError:
                return default
        if isinstance(default, int):
            try:
                return int(env)
            except ValueError:
                return default
        # for strings, just return the env var as-is
        return env
    # fall back to JSON file value, or default if not found
    return obj.get(key, default)


# load configuration from JSON file and environment variables
def load_config() -> Config:
    # base directory can be overridden by env var, otherwise auto-detect
    base = Path(os.getenv(f"{ENV_PREFIX}BASE_DIR") or _resolve_base_dir())
    # config file lives in data/config.json
    cfg_file = base / "data" / "config.json"
    obj = {}
    # try to load the JSON config file if it exists
    if cfg_file.exists():
        try:
            obj = json.loads(cfg_file.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError):
            # if JSON is broken, just use empty dict (all defaults)
            obj = {}
        if not isinstance(obj, dict):
            obj = {}

    host = _get(obj, "host", "127.0.0.1")
    port = _get(obj, "port", 3001)
    # each value checks: env var > JSON file > default
    return Config(
        base_dir=base,
        memories_path=base / _get(obj, "memories_path", "data/memories.json"),
        host=host,
        port=port,
        default_limit=_get(obj, "default_limit", 50),
        max_limit=_get(obj, "max_limit", 1000),
        preview_chars=_get(obj, "preview_chars", 100),
        server_url=str(_get(obj, "server_url", f"http://{host}:{port}")).rstrip("/"),
        request_timeout_sec=_get(obj, "request_timeout_sec", 8.0),
        log_level=str(_get(obj, "log_level", "INFO")).upper(),
    )
