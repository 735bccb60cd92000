"""
Tests for agent.client - HTTP calls from the agent to the bridge
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from agent.client import IngestionClient, RemoteUnavailable
from store.records import Source


def _response(status: int = 200, payload=None, text: str = ""):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.text = text
    if isinstance(payload, Exception):
        r.json.side_effect = payload
    else:
        r.json.return_value = payload
    return r


class TestIngestionClient:
    """Tests for IngestionClient"""

    @pytest.fixture
    def session(self):
        return MagicMock(spec=requests.Session)

    @pytest.fixture
    def client(self, session):
        return IngestionClient("http://bridge.test:3001/", timeout=2.5, session=session)

    def test_base_url_trailing_slash_dropped(self, client):
        assert client.base_url == "http://bridge.test:3001"

    def test_health(self, client, session):
        session.request.return_value = _response(payload={"status": "healthy", "memoryCount": 3})
        assert client.health()["memoryCount"] == 3
        session.request.assert_called_once_with(
            "GET", "http://bridge.test:3001/health", json=None, timeout=2.5
        )

    def test_check_hashes(self, client, session):
        session.request.return_value = _response(
            payload={"success": True, "hashStatus": {"a": True, "b": False}, "summary": {}}
        )
        assert client.check_hashes(iter(["a", "b"])) == {"a": True, "b": False}
        _, kwargs = session.request.call_args
        assert kwargs["json"] == {"hashes": ["a", "b"]}

    def test_check_hashes_missing_status(self, client, session):
        session.request.return_value = _response(payload={"success": True})
        with pytest.raises(RemoteUnavailable):
            client.check_hashes(["a"])

    def test_store_batch_payload(self, client, session):
        session.request.return_value = _response(payload={"success": True, "stored": 1})
        src = Source(url="https://x.test", title="X")
        out = client.store_batch([{"content": "c", "hash": "h"}], src)
        assert out["stored"] == 1
        args, kwargs = session.request.call_args
        assert args == ("POST", "http://bridge.test:3001/store")
        assert kwargs["json"] == {
            "blocks": [{"content": "c", "hash": "h"}],
            "metadata": {"url": "https://x.test", "title": "X", "userAgent": None},
        }

    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(RemoteUnavailable):
            client.health()

    def test_timeout(self, client, session):
        session.request.side_effect = requests.Timeout("slow")
        with pytest.raises(RemoteUnavailable):
            client.store_batch([], Source())

    def test_non_2xx(self, client, session):
        session.request.return_value = _response(status=500, payload={"error": "x"}, text="boom")
        with pytest.raises(RemoteUnavailable, match="500"):
            client.health()

    def test_non_json_body(self, client, session):
        session.request.return_value = _response(payload=ValueError("no json"))
        with pytest.raises(RemoteUnavailable):
            client.health()

    def test_default_session_created(self):
        c = IngestionClient("http://x")
        assert isinstance(c.session, requests.Session)
        assert c.timeout == 8.0
