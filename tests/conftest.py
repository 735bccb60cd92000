from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest
import requests

from store.memory_store import MemoryStore


def _env_url() -> str:
    return os.getenv("MEMCAP_BASE_URL", "http://127.0.0.1:3001").rstrip("/")


@pytest.fixture(scope="session")
def base_url() -> str:
    return _env_url()


@pytest.fixture(scope="session")
def http():
    """Simple requests wrapper with a short timeout."""

    class _HTTP:
        def get(self, url: str, **kw):
            kw.setdefault("timeout", 5)
            return requests.get(url, **kw)

        def post(self, url: str, json: dict[str, Any] | None = None, **kw):
            kw.setdefault("timeout", 8)
            return requests.post(url, json=json, **kw)

    return _HTTP()


@pytest.fixture(scope="session")
def server_up(base_url: str, http):
    """Skip the test if no bridge is listening."""
    try:
        r = http.get(f"{base_url}/health")
        if r.status_code != 200:
            pytest.skip(f"Server reachable but non-200 from /health: {r.status_code}")
    except Exception as exc:
        pytest.skip(f"Server not reachable at {base_url} ({exc})")


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "memories.json"


@pytest.fixture
def store(store_path: Path) -> MemoryStore:
    """A loaded, empty store backed by a temp file."""
    s = MemoryStore(store_path)
    s.load()
    return s


def assert_has_keys(obj: dict[str, Any], required: tuple[str, ...]) -> None:
    missing = [k for k in required if k not in obj]
    assert not missing, f"Missing keys: {missing} in {obj}"
