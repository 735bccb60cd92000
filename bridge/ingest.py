# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the ingestion side of the bridge. validates what the scanning agent sends, pre-checks fingerprints
against the memory store, stores the non-duplicate blocks, and reports per-block outcomes.

request bodies are validated up front into explicit types (BlockInput, Source) so nothing half-parsed ever
reaches the store. a bad body raises ValidationError, which the HTTP layer turns into a 400.

check_hashes() and store_batch() both go through MemoryStore.hash_exists, so a hash reported as existing by
check_hashes is guaranteed to be rejected as a duplicate by store_batch (and the other way around).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from algorithm.content_hash import content_hash, trim_content
from store.memory_store import MemoryStore
from store.records import DEFAULT_FORMAT_VERSION, Source, build_record

ingest_logger = logging.getLogger("memcap.ingest")


class ValidationError(ValueError):
    """request body does not have the expected shape."""


@dataclass(frozen=True)
class BlockInput:
    content: str
    hash: str | None = None
    word_count: int | None = None
    timestamp: str | None = None  # producer capture time, informational only
    format_version: str = DEFAULT_FORMAT_VERSION


@dataclass
class BatchResult:
    stored: int = 0
    duplicates: int = 0
    skipped: int = 0
    total_records: int = 0
    entries: list[dict[str, Any]] = field(default_factory=list)
    duplicate_details: list[dict[str, Any]] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "stored": self.stored,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "totalRecords": self.total_records,
            "entries": self.entries,
            "duplicateDetails": self.duplicate_details,
            "details": self.details,
        }


def _parse_block(i: int, raw: Any) -> BlockInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"blocks[{i}] must be an object")
    content = raw.get("content")
    if not isinstance(content, str):
        raise ValidationError(f"blocks[{i}].content must be a string")
    supplied_hash = raw.get("hash")
    if supplied_hash is not None and not isinstance(supplied_hash, str):
        raise ValidationError(f"blocks[{i}].hash must be a string")
    word_count = raw.get("wordCount")
    # bool is an int subclass, reject it explicitly
    if word_count is not None and (isinstance(word_count, bool) or not isinstance(word_count, int)):
        raise ValidationError(f"blocks[{i}].wordCount must be an integer")
    ts = raw.get("timestamp")
    if ts is not None and not isinstance(ts, str):
        raise ValidationError(f"blocks[{i}].timestamp must be a string")
    fmt = raw.get("formatVersion")
    return BlockInput(
        content=content,
        hash=supplied_hash or None,
        word_count=word_count,
        timestamp=ts,
        format_version=str(fmt) if fmt else DEFAULT_FORMAT_VERSION,
    )


def parse_store_request(body: Any, user_agent: str | None = None) -> tuple[list[BlockInput], Source]:
    """
    body: { blocks: [{content, hash?, timestamp?, wordCount?, formatVersion?}], metadata?: {url?, title?, userAgent?} }
    metadata.userAgent falls back to the request's User-Agent header.
    """
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    blocks = body.get("blocks")
    if not isinstance(blocks, list):
        raise ValidationError("Invalid blocks data: 'blocks' must be an array")
    metadata = body.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("'metadata' must be an object")

    parsed = [_parse_block(i, raw) for i, raw in enumerate(blocks)]
    source = Source.from_dict(metadata)
    if source.user_agent is None and user_agent:
        source = Source(url=source.url, title=source.title, user_agent=user_agent)
    return parsed, source


def parse_hash_request(body: Any) -> list[str]:
    """body: { hashes: [string] }"""
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    hashes = body.get("hashes")
    if not isinstance(hashes, list):
        raise ValidationError("Invalid hashes array: 'hashes' must be an array")
    if not all(isinstance(h, str) for h in hashes):
        raise ValidationError("every hash must be a string")
    return hashes


class IngestionService:
    def __init__(self, store: MemoryStore, preview_chars: int = 100) -> None:
        self.store = store
        self.preview_chars = preview_chars

    def check_hashes(self, hashes: list[str]) -> dict[str, bool]:
        """hash -> already stored? (same membership test the store path uses)"""
        with self.store.lock:
            status = {h: self.store.hash_exists(h) for h in hashes}
        existing = sum(1 for v in status.values() if v)
        ingest_logger.info(
            f"🔍 Hash check: {len(status) - existing} new, {existing} existing"
        )
        return status

    @staticmethod
    def hash_summary(status: dict[str, bool]) -> dict[str, int]:
        existing = sum(1 for v in status.values() if v)
        return {"total": len(status), "existing": existing, "new": len(status) - existing}

    def _report_duplicate(self, result: BatchResult, index: int, fingerprint: str, existing_id: str | None) -> None:
        result.duplicates += 1
        result.duplicate_details.append(
            {"hash": fingerprint, "reason": "duplicate_content", "existingId": existing_id}
        )
        result.details.append(
            {"index": index, "status": "duplicate", "hash": fingerprint, "existingId": existing_id}
        )
        ingest_logger.info(f"🔄 Skipped duplicate content (hash: {fingerprint})")

    def store_batch(self, blocks: list[BlockInput], source: Source) -> BatchResult:
        """
        process blocks in order: blank content is skipped, known fingerprints are reported as duplicates
        (with the id of the record already holding them), everything else is built and appended.
        the whole batch runs under the store lock, the outcome list is returned only once it is done.
        """
        result = BatchResult()
        with self.store.lock:
            for i, block in enumerate(blocks):
                content = trim_content(block.content)
                if not content:
                    result.skipped += 1
                    result.details.append({"index": i, "status": "skipped", "reason": "empty"})
                    continue

                fingerprint = block.hash or content_hash(content)
                if self.store.hash_exists(fingerprint):
                    existing = self.store.find_by_hash(fingerprint)
                    self._report_duplicate(result, i, fingerprint, existing.id if existing else None)
                    continue

                record = build_record(
                    content, source, supplied_hash=fingerprint, format_version=block.format_version
                )
                outcome = self.store.append(record)
                if not outcome.accepted:
                    self._report_duplicate(result, i, fingerprint, outcome.existing_id)
                    continue

                result.stored += 1
                result.entries.append(
                    {"id": record.id, "hash": fingerprint, "preview": record.preview(self.preview_chars)}
                )
                result.details.append({"index": i, "status": "stored", "hash": fingerprint, "id": record.id})

            result.total_records = len(self.store)

        ingest_logger.info(
            f"📝 Stored {result.stored} new blocks, skipped {result.duplicates} duplicates "
            f"(total: {result.total_records})"
        )
        return result
