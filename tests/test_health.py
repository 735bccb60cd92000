from __future__ import annotations

from conftest import assert_has_keys


def test_health_ok(server_up, base_url, http):
    r = http.get(f"{base_url}/health")
    assert r.status_code == 200
    data = r.json()
    assert_has_keys(data, ("status", "memoryCount", "timestamp"))
    assert data["status"] == "healthy"
