"""
Tests for bridge.app - Flask routes of the bridge
"""

from __future__ import annotations

import csv
import io
import json
from unittest.mock import patch

import pytest

from bridge.app import build_app
from bridge.config import Config
from conftest import assert_has_keys
from store.memory_store import MemoryStore, StoreLoadError


def _cfg(tmp_path, **over) -> Config:
    values = dict(
        base_dir=tmp_path,
        memories_path=tmp_path / "data" / "memories.json",
        host="127.0.0.1",
        port=3001,
        default_limit=50,
        max_limit=1000,
        preview_chars=100,
        server_url="http://127.0.0.1:3001",
        request_timeout_sec=8.0,
        log_level="INFO",
    )
    values.update(over)
    return Config(**values)


def _page_blocks(*contents: str) -> dict:
    return {
        "blocks": [{"content": c} for c in contents],
        "metadata": {"url": "https://chat.example/c/1", "title": "Chat"},
    }


class TestBridgeRoutes:
    """Tests for the bridge Flask routes"""

    @pytest.fixture
    def cfg(self, tmp_path):
        return _cfg(tmp_path)

    @pytest.fixture
    def app(self, cfg):
        app = build_app(cfg=cfg)
        app.config["TESTING"] = True
        return app

    @pytest.fixture
    def client(self, app):
        return app.test_client()

    def _store(self, client, *contents):
        r = client.post("/store", json=_page_blocks(*contents))
        assert r.status_code == 200
        return r.get_json()

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        data = r.get_json()
        assert_has_keys(data, ("status", "memoryCount", "timestamp"))
        assert data["status"] == "healthy"
        assert data["memoryCount"] == 0

    def test_index_lists_endpoints(self, client):
        data = client.get("/").get_json()
        assert "POST /store" in data["endpoints"]

    def test_store_and_duplicate_resubmission(self, client):
        first = self._store(client, "hello world", "second block")
        assert first["stored"] == 2
        assert first["duplicates"] == 0
        again = self._store(client, "hello world")
        assert again["stored"] == 0
        assert again["duplicates"] == 1
        assert again["totalRecords"] == first["totalRecords"] == 2

    def test_store_records_user_agent(self, client):
        client.post("/store", json=_page_blocks("ua check"), headers={"User-Agent": "test-browser/1.0"})
        rec = client.get("/memories").get_json()["results"][0]
        assert rec["source"]["userAgent"] == "test-browser/1.0"
        assert rec["source"]["url"] == "https://chat.example/c/1"

    def test_store_bad_body(self, client):
        r = client.post("/store", json={"blocks": "nope"})
        assert r.status_code == 400
        assert "error" in r.get_json()

    def test_store_non_json(self, client):
        r = client.post("/store", data="not json", content_type="text/plain")
        assert r.status_code == 400

    def test_store_write_failure_is_500(self, client):
        with patch("store.memory_store.os.replace", side_effect=OSError("disk full")):
            r = client.post("/store", json=_page_blocks("never saved"))
        assert r.status_code == 500
        assert "error" in r.get_json()
        assert client.get("/health").get_json()["memoryCount"] == 0

    def test_check_hashes(self, client):
        stored = self._store(client, "already here")
        known = stored["entries"][0]["hash"]
        r = client.post("/check-hashes", json={"hashes": [known, "zzz"]})
        assert r.status_code == 200
        data = r.get_json()
        assert data["hashStatus"] == {known: True, "zzz": False}
        assert data["summary"] == {"total": 2, "existing": 1, "new": 1}

    def test_check_hashes_bad_body(self, client):
        assert client.post("/check-hashes", json={"hashes": "x"}).status_code == 400

    def test_memories_search(self, client):
        self._store(client, "function foo() {}", "TODO write tests", "plain note")
        data = client.get("/memories?tags=code").get_json()
        assert data["total"] == 3
        assert data["filtered"] == 1
        assert data["results"][0]["content"] == "function foo() {}"
        data = client.get("/memories?search=TESTS").get_json()
        assert [r["content"] for r in data["results"]] == ["TODO write tests"]
        assert client.get("/memories?limit=2").get_json()["filtered"] == 2

    def test_memories_since(self, client):
        self._store(client, "recent note")
        assert client.get("/memories?since=2000-01-01T00:00:00Z").get_json()["filtered"] == 1
        assert client.get("/memories?since=2999-01-01T00:00:00Z").get_json()["filtered"] == 0

    @pytest.mark.parametrize("query", ["limit=abc", "limit=-1", "since=yesterday"])
    def test_memories_bad_params(self, client, query):
        assert client.get(f"/memories?{query}").status_code == 400

    def test_memories_limit_clamped(self, tmp_path):
        app = build_app(cfg=_cfg(tmp_path, max_limit=1))
        client = app.test_client()
        client.post("/store", json=_page_blocks("one", "two"))
        assert client.get("/memories?limit=500").get_json()["filtered"] == 1

    def test_get_and_delete_memory(self, client):
        rec_id = self._store(client, "delete me")["entries"][0]["id"]
        r = client.get(f"/memories/{rec_id}")
        assert r.status_code == 200
        assert r.get_json()["content"] == "delete me"
        r = client.delete(f"/memories/{rec_id}")
        assert r.get_json() == {"deleted": True, "id": rec_id}
        assert client.get(f"/memories/{rec_id}").status_code == 404
        assert client.delete(f"/memories/{rec_id}").status_code == 404

    def test_clear(self, client):
        self._store(client, "a", "b")
        assert client.delete("/memories").get_json() == {"cleared": 2}
        assert client.get("/health").get_json()["memoryCount"] == 0

    def test_stats_and_hash_stats(self, client):
        self._store(client, "one two #x")
        stats = client.get("/stats").get_json()
        assert stats["totalRecords"] == 1
        assert stats["tags"] == ["x"]
        hs = client.get("/hash-stats").get_json()
        assert hs["uniqueHashes"] == 1
        assert hs["duplicateCount"] == 0

    def test_recent(self, client):
        self._store(client, "older", "z" * 150)
        recent = client.get("/recent?n=1").get_json()
        assert len(recent) == 1
        assert recent[0]["preview"].endswith("...")

    def test_unknown_route_is_json_404(self, client):
        r = client.get("/nope")
        assert r.status_code == 404
        assert "error" in r.get_json()

    def test_cors_header(self, client):
        r = client.get("/health", headers={"Origin": "https://chat.example"})
        assert r.headers.get("Access-Control-Allow-Origin") in ("*", "https://chat.example")


class TestExport:
    """Tests for /export"""

    @pytest.fixture
    def client(self, tmp_path):
        app = build_app(cfg=_cfg(tmp_path))
        c = app.test_client()
        c.post("/store", json=_page_blocks("first #a", "second, with \"quotes\""))
        return c

    def test_json(self, client):
        r = client.get("/export")
        assert r.status_code == 200
        data = json.loads(r.data)
        assert [d["content"] for d in data] == ["first #a", 'second, with "quotes"']

    def test_jsonl(self, client):
        r = client.get("/export?format=jsonl")
        lines = r.data.decode("utf-8").splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["content"] == "first #a"

    def test_csv(self, client):
        r = client.get("/export?format=csv")
        assert r.headers["Content-Type"].startswith("text/csv")
        text = r.data.decode("utf-8-sig")
        rows = list(csv.DictReader(io.StringIO(text)))
        assert rows[0]["tags"] == "a"
        assert rows[1]["content"] == 'second, with "quotes"'
        assert rows[0]["url"] == "https://chat.example/c/1"

    def test_xlsx(self, client):
        from openpyxl import load_workbook

        r = client.get("/export?format=xlsx")
        assert r.status_code == 200
        wb = load_workbook(io.BytesIO(r.data))
        ws = wb.active
        header = [c.value for c in ws[1]]
        assert header[0] == "id"
        assert ws.max_row == 3

    def test_formula_like_cells_neutralized(self, tmp_path):
        app = build_app(cfg=_cfg(tmp_path))
        c = app.test_client()
        c.post(
            "/store",
            json={
                "blocks": [{"content": "=HYPERLINK(\"http://evil\")"}, {"content": "- list item"}],
                "metadata": {"url": "@attacker", "title": "+cmd"},
            },
        )
        rows = list(csv.DictReader(io.StringIO(c.get("/export?format=csv").data.decode("utf-8-sig"))))
        assert rows[0]["content"] == "'=HYPERLINK(\"http://evil\")"
        assert rows[1]["content"] == "'- list item"
        assert rows[0]["url"] == "'@attacker"
        assert rows[0]["title"] == "'+cmd"

        from openpyxl import load_workbook

        ws = load_workbook(io.BytesIO(c.get("/export?format=xlsx").data)).active
        content_col = [cell.value for cell in ws[1]].index("content") + 1
        assert ws.cell(row=2, column=content_col).value == "'=HYPERLINK(\"http://evil\")"
        assert ws.cell(row=2, column=content_col).data_type != "f"

        # json export keeps the stored text untouched
        assert json.loads(c.get("/export").data)[0]["content"] == "=HYPERLINK(\"http://evil\")"

    def test_unknown_format(self, client):
        assert client.get("/export?format=pdf").status_code == 400


class TestBuildApp:
    """Tests for build_app startup behaviour"""

    def test_corrupt_store_stops_startup(self, tmp_path):
        cfg = _cfg(tmp_path)
        cfg.memories_path.parent.mkdir(parents=True)
        cfg.memories_path.write_text("{broken", encoding="utf-8")
        with pytest.raises(StoreLoadError):
            build_app(cfg=cfg)

    def test_uses_given_store(self, tmp_path):
        store = MemoryStore(tmp_path / "other.json")
        store.load()
        app = build_app(store=store, cfg=_cfg(tmp_path))
        assert app.config["MEMCAP_STORE"] is store

    def test_existing_records_loaded(self, tmp_path):
        cfg = _cfg(tmp_path)
        build_app(cfg=cfg).test_client().post("/store", json=_page_blocks("persisted"))
        client = build_app(cfg=cfg).test_client()
        assert client.get("/health").get_json()["memoryCount"] == 1
