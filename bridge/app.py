# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: flask HTTP bridge between the scanning agent and the memory store. runs entirely locally.

what this app is responsible for:
- ingestion: POST /store validates a batch of captured blocks and stores the non-duplicates
- pre-filtering: POST /check-hashes tells the agent which fingerprints are already stored
- querying: GET /memories (search), GET /memories/<id>, GET /stats, GET /hash-stats, GET /recent
- deletion: DELETE /memories/<id>, DELETE /memories
- export: GET /export in json, jsonl, csv or xlsx
- health: GET /health

how data flows through the app:
1. the agent posts {blocks, metadata}; the body is parsed into BlockInput/Source or rejected with a 400
2. IngestionService checks each fingerprint against the store and appends the new ones
3. the store rewrites its JSON file after every change; a failed write is a 500 and nothing changes

the store is created (and loaded) by build_app unless one is passed in; a corrupt store file raises
StoreLoadError out of build_app so startup stops instead of running on an empty store.
"""

from __future__ import annotations

# --- standard library ---
import csv
import io
import json
import logging
from typing import Any

# --- third-party ---
from dotenv import load_dotenv
from flask import Flask, jsonify, make_response, request, send_file
from flask_cors import CORS
from waitress import serve as _serve
from werkzeug.exceptions import HTTPException

# --- local/project imports ---
from bridge.config import Config, load_config
from bridge.ingest import IngestionService, ValidationError, parse_hash_request, parse_store_request
from store.memory_store import MemoryStore, StoreWriteError
from store.records import now_iso, parse_timestamp

load_dotenv()  # load .env file if it exists (MEMCAP_* overrides)

bridge_logger = logging.getLogger("memcap.bridge")

# tabular export columns, in order
EXPORT_COLS = ["id", "timestamp", "url", "title", "tags", "wordCount", "contentHash", "formatVersion", "content"]
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")  # cell starts a spreadsheet treats as a formula


def _json_body() -> Any:
    body = request.get_json(silent=True)
    if body is None:
        raise ValidationError("request body must be JSON")
    return body


def _parse_limit(raw: str | None, default: int, cap: int) -> int:
    if raw is None or raw.strip() == "":
        return default
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationError(f"limit must be an integer, got {raw!r}") from None
    if limit < 0:
        raise ValidationError("limit must be >= 0")
    return min(limit, cap)


def _parse_tags() -> list[str]:
    # accept ?tags=a,b as well as ?tags=a&tags=b
    out: list[str] = []
    for raw in request.args.getlist("tags"):
        out.extend(t.strip() for t in raw.split(",") if t.strip())
    return out


def _cell(value: Any) -> Any:
    # page text that starts like a formula is written as text (leading apostrophe) in spreadsheet exports
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return f"'{value}"
    return value


def _export_row(rec: dict[str, Any]) -> dict[str, Any]:
    src = rec.get("source") or {}
    row = {
        "id": rec.get("id", ""),
        "timestamp": rec.get("timestamp") or "",
        "url": src.get("url", ""),
        "title": src.get("title", ""),
        "tags": ",".join(rec.get("tags") or []),
        "wordCount": rec.get("wordCount", 0),
        "contentHash": rec.get("contentHash", ""),
        "formatVersion": rec.get("formatVersion", ""),
        "content": rec.get("content", ""),
    }
    return {k: _cell(v) for k, v in row.items()}


def build_app(store: MemoryStore | None = None, cfg: Config | None = None) -> Flask:
    cfg = cfg or load_config()
    if store is None:
        store = MemoryStore(cfg.memories_path)
    if not store.loaded:
        store.load()  # StoreLoadError propagates: a corrupt file must stop startup

    service = IngestionService(store, preview_chars=cfg.preview_chars)

    app = Flask(__name__)
    app.config["MEMCAP_CONFIG"] = cfg
    app.config["MEMCAP_STORE"] = store
    app.json.sort_keys = False  # keep response keys in the order we build them

    # the agent posts from page context, so every origin is allowed
    CORS(app, resources={r"/*": {"origins": "*"}})

    # ---------------- error handling ----------------

    @app.errorhandler(ValidationError)
    def _validation_error(e: ValidationError):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(StoreWriteError)
    def _write_error(e: StoreWriteError):
        bridge_logger.error(f"❌ Persistence failure: {e}")
        return jsonify({"error": "Failed to persist memory store", "details": str(e)}), 500

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _unexpected_error(e: Exception):
        bridge_logger.exception(f"❌ Unhandled error on {request.method} {request.path}")
        return jsonify({"error": "Internal server error", "details": str(e)}), 500

    # ---------------- routes ----------------

    @app.get("/")
    def index():
        return jsonify(
            {
                "name": "MemCap bridge",
                "endpoints": [
                    "GET /health",
                    "POST /store",
                    "POST /check-hashes",
                    "GET /memories",
                    "GET /memories/<id>",
                    "DELETE /memories/<id>",
                    "DELETE /memories",
                    "GET /stats",
                    "GET /hash-stats",
                    "GET /recent",
                    "GET /export",
                ],
            }
        )

    @app.get("/health")
    def health():
        return jsonify({"status": "healthy", "memoryCount": len(store), "timestamp": now_iso()})

    @app.post("/check-hashes")
    def check_hashes():
        hashes = parse_hash_request(_json_body())
        status = service.check_hashes(hashes)
        return jsonify({"success": True, "hashStatus": status, "summary": service.hash_summary(status)})

    @app.post("/store")
    def store_blocks():
        blocks, source = parse_store_request(_json_body(), user_agent=request.headers.get("User-Agent"))
        bridge_logger.info(f"📥 Received {len(blocks)} blocks from {source.url}")
        result = service.store_batch(blocks, source)
        return jsonify(result.to_dict())

    @app.get("/memories")
    def list_memories():
        args = request.args
        limit = _parse_limit(args.get("limit"), cfg.default_limit, cfg.max_limit)
        since = None
        if args.get("since"):
            try:
                since = parse_timestamp(args["since"])
            except ValueError:
                raise ValidationError(f"since must be an ISO-8601 timestamp, got {args['since']!r}") from None
        results = store.search(query=args.get("search"), tags=_parse_tags(), since=since, limit=limit)
        return jsonify(
            {
                "results": [r.to_dict() for r in results],
                "total": len(store),
                "filtered": len(results),
            }
        )

    @app.get("/memories/<record_id>")
    def get_memory(record_id: str):
        rec = store.get(record_id)
        if rec is None:
            return jsonify({"error": "Memory not found"}), 404
        return jsonify(rec.to_dict())

    @app.delete("/memories/<record_id>")
    def delete_memory(record_id: str):
        if not store.delete(record_id):
            return jsonify({"deleted": False, "error": "Memory not found"}), 404
        return jsonify({"deleted": True, "id": record_id})

    @app.delete("/memories")
    def clear_memories():
        return jsonify({"cleared": store.clear()})

    @app.get("/stats")
    def stats():
        return jsonify(store.stats())

    @app.get("/hash-stats")
    def hash_stats():
        return jsonify(store.hash_stats())

    @app.get("/recent")
    def recent():
        n = _parse_limit(request.args.get("n"), 10, cfg.max_limit)
        return jsonify(store.recent(n, preview_chars=cfg.preview_chars))

    # export endpoint: the whole store in various formats (JSON, JSONL, CSV, XLSX)
    @app.get("/export")
    def export_memories():
        """
        export every record in insertion order.
        format=json (default) | jsonl | csv | xlsx
        """
        fmt = (request.args.get("format") or "json").lower()
        rows = [r.to_dict() for r in store.all()]

        # JSONL
        if fmt == "jsonl":
            lines = [json.dumps(rec, ensure_ascii=False) for rec in rows]
            resp = make_response("\n".join(lines))
            resp.headers["Content-Type"] = "application/x-ndjson"
            resp.headers["Content-Disposition"] = 'attachment; filename="memcap_export.jsonl"'
            return resp

        # JSON
        if fmt == "json":
            resp = make_response(json.dumps(rows, ensure_ascii=False, indent=2))
            resp.headers["Content-Type"] = "application/json"
            resp.headers["Content-Disposition"] = 'attachment; filename="memcap_export.json"'
            return resp

        # XLSX
        if fmt == "xlsx":
            from openpyxl import Workbook
            from openpyxl.utils import get_column_letter

            wb = Workbook()
            ws = wb.active
            ws.title = "MemCap"
            ws.append(EXPORT_COLS)
            for rec in rows:
                r = _export_row(rec)
                ws.append([r.get(c, "") for c in EXPORT_COLS])

            for i, c in enumerate(EXPORT_COLS, 1):
                max_len = len(c)
                for row in ws.iter_rows(min_row=2, min_col=i, max_col=i):
                    v = row[0].value
                    if v is None:
                        continue
                    max_len = max(max_len, len(str(v)))
                ws.column_dimensions[get_column_letter(i)].width = max(
                    10, min(60, int(max_len * 1.1 + 2))
                )

            bio = io.BytesIO()
            wb.save(bio)
            bio.seek(0)
            return send_file(
                bio,
                as_attachment=True,
                download_name="memcap_export.xlsx",
                mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )

        if fmt != "csv":
            raise ValidationError(f"unknown export format {fmt!r} (json, jsonl, csv, xlsx)")

        # CSV (Excel-friendly, BOM + quoted + CRLF)
        buf = io.StringIO(newline="")
        writer = csv.DictWriter(
            buf,
            fieldnames=EXPORT_COLS,
            extrasaction="ignore",
            quoting=csv.QUOTE_ALL,
            lineterminator="\r\n",
        )
        writer.writeheader()
        for rec in rows:
            writer.writerow(_export_row(rec))

        out_bytes = ("﻿" + buf.getvalue()).encode("utf-8")
        resp = make_response(out_bytes)
        resp.headers["Content-Type"] = "text/csv; charset=utf-8"
        resp.headers["Content-Disposition"] = 'attachment; filename="memcap_export.csv"'
        return resp

    return app


# run the bridge: build the Flask app and serve it with waitress
def run_bridge(cfg: Config | None = None, host: str | None = None, port: int | None = None) -> None:
    cfg = cfg or load_config()
    app = build_app(cfg=cfg)
    host = host or cfg.host
    port = port or cfg.port
    bridge_logger.info(f"🚀 MemCap bridge running on http://{host}:{port}")
    try:
        _serve(app, host=host, port=port)
    except KeyboardInterrupt:
        pass  # expected when shutting down
