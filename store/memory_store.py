# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the one owner of every memory record. keeps the record list in memory, enforces content-hash
uniqueness on append, answers searches/stats from the live list, and checkpoints the whole list to a single
JSON array file after every mutation.

persistence discipline
- the file is read once by load(); after that the in-memory list is the source of truth
- every mutation (append, delete, clear) rewrites the whole file: write <file>.tmp, then os.replace()
- if the write fails the in-memory change is rolled back so memory and disk stay the same
- a corrupt file at startup is fatal (StoreLoadError) and is never overwritten, so nothing gets lost silently

concurrency
- single process, single writer. `lock` (an RLock) serializes mutations; the ingestion service holds it for
  a whole batch so check-then-append cannot race with another request
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from store.records import LEGACY_FORMAT_VERSION, MemoryRecord, parse_timestamp

store_logger = logging.getLogger("memcap.store")

DEFAULT_LIMIT = 50  # search results returned when the caller gives no limit


class StoreLoadError(RuntimeError):
    """the backing file exists but cannot be parsed into records."""


class StoreWriteError(RuntimeError):
    """the backing file could not be rewritten; the in-memory change was rolled back."""


@dataclass(frozen=True)
class AppendResult:
    accepted: bool
    reason: str | None = None  # "duplicate" when rejected
    existing_id: str | None = None  # id of the record that already holds the hash


class MemoryStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.lock = threading.RLock()
        self._records: list[MemoryRecord] = []
        self._by_hash: dict[str, str] = {}  # contentHash -> id of the first record holding it
        self._loaded = False

    # loading / saving

    def load(self) -> int:
        """read the backing file; returns how many records were loaded."""
        with self.lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                store_logger.info(f"Starting with empty memory store ({self.path})")
                self._set_records([])
                return 0

            try:
                raw = self.path.read_text(encoding="utf-8")
            except OSError as e:
                raise StoreLoadError(f"cannot read memory store {self.path}: {e}") from e

            if not raw.strip():
                self._set_records([])
                return 0

            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                raise StoreLoadError(f"memory store {self.path} is not valid JSON: {e}") from e
            if not isinstance(data, list):
                raise StoreLoadError(
                    f"memory store {self.path} must hold a JSON array, got {type(data).__name__}"
                )

            records: list[MemoryRecord] = []
            for i, obj in enumerate(data):
                try:
                    records.append(MemoryRecord.from_dict(obj))
                except ValueError as e:
                    raise StoreLoadError(f"memory store {self.path}, entry {i}: {e}") from e

            self._set_records(records)
            dupes = len(records) - len(self._by_hash)
            if dupes:
                store_logger.warning(f"Memory store holds {dupes} records with duplicate hashes")
            store_logger.info(f"Loaded {len(records)} memories from {self.path}")
            return len(records)

    def _set_records(self, records: list[MemoryRecord]) -> None:
        self._records = records
        self._by_hash = {}
        for rec in records:
            self._by_hash.setdefault(rec.content_hash, rec.id)
        self._loaded = True

    def _save(self) -> None:
        payload = json.dumps([r.to_dict() for r in self._records], indent=2, ensure_ascii=False)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except OSError as e:
            store_logger.error(f"Error saving memories to {self.path}: {e}")
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            raise StoreWriteError(f"cannot write memory store {self.path}: {e}") from e

    def _commit(self, previous: list[MemoryRecord]) -> None:
        # persist the current list; on failure put the previous list back before re-raising
        try:
            self._save()
        except StoreWriteError:
            self._set_records(previous)
            raise

    # reads

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._records)

    def all(self) -> list[MemoryRecord]:
        """snapshot of every record in insertion order."""
        with self.lock:
            return list(self._records)

    def hash_exists(self, content_hash: str) -> bool:
        return content_hash in self._by_hash

    def find_by_hash(self, content_hash: str) -> MemoryRecord | None:
        rec_id = self._by_hash.get(content_hash)
        return self.get(rec_id) if rec_id else None

    def get(self, record_id: str) -> MemoryRecord | None:
        with self.lock:
            return next((r for r in self._records if r.id == record_id), None)

    def search(
        self,
        query: str | None = None,
        tags: list[str] | None = None,
        since: datetime | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[MemoryRecord]:
        """
        criteria are optional and AND'd together:
          query -> case-insensitive substring of content or of any tag
          tags  -> record carries at least one of these tags (case-insensitive)
          since -> record timestamp >= since
        newest first, then cut to limit.
        """
        if limit < 0:
            raise ValueError("limit must be >= 0")
        q = (query or "").strip().lower()
        wanted = {t.strip().lower() for t in (tags or []) if t and t.strip()}
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)  # naive bounds are taken as UTC

        with self.lock:
            indexed = list(enumerate(self._records))

        hits: list[tuple[float, int, MemoryRecord]] = []
        for idx, rec in indexed:
            rec_tags = [t.lower() for t in rec.tags]
            if q and q not in rec.content.lower() and not any(q in t for t in rec_tags):
                continue
            if wanted and not wanted.intersection(rec_tags):
                continue
            ts = _record_time(rec)
            if since is not None and (ts is None or ts < since):
                continue
            hits.append((ts.timestamp() if ts else float("-inf"), idx, rec))

        # newest first; equal timestamps put the later insertion first
        hits.sort(key=lambda h: (h[0], h[1]), reverse=True)
        return [rec for _, _, rec in hits[:limit]]

    def recent(self, n: int = 10, preview_chars: int = 100) -> list[dict[str, Any]]:
        """the last n inserted records as short previews, newest first."""
        with self.lock:
            tail = self._records[-n:] if n > 0 else []
        return [
            {
                "id": r.id,
                "preview": r.preview(preview_chars),
                "timestamp": r.timestamp,
                "wordCount": r.word_count,
                "tags": list(r.tags),
            }
            for r in reversed(tail)
        ]

    def stats(self) -> dict[str, Any]:
        """aggregate numbers, computed from the live list on every call."""
        with self.lock:
            records = list(self._records)
        total_words = sum(r.word_count for r in records)
        all_tags = sorted({t for r in records for t in r.tags})
        versions = sorted({r.format_version or LEGACY_FORMAT_VERSION for r in records})
        timed = [(t, r.timestamp) for t, r in ((_record_time(r), r) for r in records) if t is not None]
        oldest = min(timed, key=lambda p: p[0])[1] if timed else None
        newest = max(timed, key=lambda p: p[0])[1] if timed else None
        return {
            "totalRecords": len(records),
            "totalWords": total_words,
            "averageWords": round(total_words / len(records)) if records else 0,
            "uniqueTags": len(all_tags),
            "tags": all_tags,
            "formatVersions": versions,
            "oldestTimestamp": oldest,
            "newestTimestamp": newest,
            "lastUpdated": records[-1].timestamp if records else None,
        }

    def hash_stats(self) -> dict[str, Any]:
        """how many distinct fingerprints the store holds and which ones appear more than once."""
        with self.lock:
            counts = Counter(r.content_hash for r in self._records)
        duplicate_hashes = [{"hash": h, "count": c} for h, c in counts.items() if c > 1]
        return {
            "totalRecords": sum(counts.values()),
            "uniqueHashes": len(counts),
            "duplicateHashes": duplicate_hashes,
            "duplicateCount": len(duplicate_hashes),
        }

    # mutations

    def append(self, record: MemoryRecord) -> AppendResult:
        with self.lock:
            existing_id = self._by_hash.get(record.content_hash)
            if existing_id is not None:
                return AppendResult(accepted=False, reason="duplicate", existing_id=existing_id)
            previous = list(self._records)
            self._records.append(record)
            self._by_hash[record.content_hash] = record.id
            self._commit(previous)
            return AppendResult(accepted=True)

    def delete(self, record_id: str) -> bool:
        with self.lock:
            idx = next((i for i, r in enumerate(self._records) if r.id == record_id), None)
            if idx is None:
                return False
            previous = list(self._records)
            del self._records[idx]
            self._set_records(self._records)  # rebuild the hash index, another record may share the hash
            self._commit(previous)
            store_logger.info(f"🗑️ Deleted memory: {record_id}")
            return True

    def clear(self) -> int:
        with self.lock:
            previous = list(self._records)
            self._set_records([])
            self._commit(previous)
            store_logger.info(f"🗑️ Cleared {len(previous)} memory entries")
            return len(previous)


def _record_time(rec: MemoryRecord) -> datetime | None:
    if not rec.timestamp:
        return None  # undated legacy record
    try:
        return parse_timestamp(rec.timestamp)
    except ValueError:
        return None
