# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: thin HTTP client the scanning agent uses to talk to the bridge. wraps a requests.Session so every call
shares one connection pool and one timeout, and turns every transport problem into RemoteUnavailable so the
scanner only has one thing to catch.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

from collections.abc import Iterable  # type hint for the blocks argument
from typing import Any  # type hint for flexible dictionary values

import requests  # HTTP client library

from store.records import Source  # page metadata sent with every batch


class RemoteUnavailable(RuntimeError):
    """the bridge could not be reached or answered with a non-2xx status."""


class IngestionClient:
    def __init__(
        self, base_url: str, timeout: float = 8.0, session: requests.Session | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")  # no trailing slash so paths join cleanly
        self.timeout = timeout  # seconds per request (connect + read)
        self.session = session or requests.Session()  # reuse one pool for every call

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"  # full endpoint url
        try:
            r = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:  # connection refused, timeout, dns, ...
            raise RemoteUnavailable(f"{method} {url} failed: {e}") from e
        if not r.ok:  # any non-2xx status counts as a failed call
            raise RemoteUnavailable(f"{method} {url} returned {r.status_code}: {r.text[:200]}")
        try:
            return r.json()  # every bridge endpoint answers with JSON
        except ValueError as e:
            raise RemoteUnavailable(f"{method} {url} returned a non-JSON body") from e

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def check_hashes(self, hashes: Iterable[str]) -> dict[str, bool]:
        """ask which fingerprints the bridge already holds; returns hash -> exists."""
        data = self._request("POST", "/check-hashes", {"hashes": list(hashes)})
        status = data.get("hashStatus") if isinstance(data, dict) else None
        if not isinstance(status, dict):
            raise RemoteUnavailable("check-hashes response has no hashStatus object")
        return {str(h): bool(v) for h, v in status.items()}

    def store_batch(self, blocks: Iterable[dict[str, Any]], source: Source) -> dict[str, Any]:
        """post one batch of blocks ({content, hash, wordCount, timestamp, formatVersion}) with page metadata."""
        payload = {"blocks": list(blocks), "metadata": source.to_dict()}
        data = self._request("POST", "/store", payload)
        if not isinstance(data, dict):
            raise RemoteUnavailable("store response is not a JSON object")
        return data
