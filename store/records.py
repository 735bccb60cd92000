# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: turns captured block content plus source metadata into a memory record. assigns the id and creation
timestamp, fingerprints the content, counts words and derives tags. also owns the on-disk shape of a record
(camelCase JSON keys) so the memory store can round-trip its file.

tag rules, applied in this order and all additive:
1. every #word token adds "word"
2. a code fence (```) or the substrings "function" / "class" adds "code"
3. "TODO" or "FIXME" adds "todo"
4. "http://" or "https://" adds "url"
the final list is deduplicated, keeping first-seen order.
"""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from algorithm.content_hash import content_hash, to_base36

DEFAULT_FORMAT_VERSION = "strict-v2"  # format tag for records captured by the strict scanner
LEGACY_FORMAT_VERSION = "legacy"  # reported for records written before format versions existed

_HASHTAG = re.compile(r"#(\w+)")
_CODE_HINTS = ("```", "function", "class")
_TODO_HINTS = ("TODO", "FIXME")
_URL_HINTS = ("http://", "https://")


@dataclass(frozen=True)
class Source:
    """where a batch of blocks was captured (not addressable on its own)."""

    url: str = "unknown"
    title: str = "unknown"
    user_agent: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "userAgent": self.user_agent}

    @classmethod
    def from_dict(cls, obj: dict[str, Any] | None) -> Source:
        obj = obj or {}
        ua = obj.get("userAgent")
        return cls(
            url=str(obj.get("url") or "unknown"),
            title=str(obj.get("title") or "unknown"),
            user_agent=str(ua) if ua else None,
        )


@dataclass(frozen=True)
class MemoryRecord:
    id: str
    content: str
    content_hash: str
    timestamp: str | None  # ISO-8601 UTC, set once when the record is built; None for undated legacy records
    source: Source
    tags: tuple[str, ...] = field(default_factory=tuple)
    word_count: int = 0
    format_version: str = DEFAULT_FORMAT_VERSION

    def preview(self, chars: int = 100) -> str:
        if len(self.content) <= chars:
            return self.content
        return self.content[:chars] + "..."

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "contentHash": self.content_hash,
            "timestamp": self.timestamp,
            "source": self.source.to_dict(),
            "tags": list(self.tags),
            "wordCount": self.word_count,
            "formatVersion": self.format_version,
        }

    @classmethod
    def from_dict(cls, obj: Any) -> MemoryRecord:
        """
        rebuild a record from its JSON shape. fields missing in older files (contentHash, tags, wordCount,
        formatVersion) are derived from content, a missing timestamp stays None (undated, never restamped);
        a record without a string id or content is rejected.
        """
        if not isinstance(obj, dict):
            raise ValueError(f"record must be an object, got {type(obj).__name__}")
        rec_id = obj.get("id")
        content = obj.get("content")
        if not isinstance(rec_id, str) or not rec_id:
            raise ValueError("record is missing a string 'id'")
        if not isinstance(content, str):
            raise ValueError(f"record {rec_id} is missing a string 'content'")

        tags = obj.get("tags")
        word_count = obj.get("wordCount")
        return cls(
            id=rec_id,
            content=content,
            content_hash=str(obj.get("contentHash") or content_hash(content)),
            timestamp=str(obj["timestamp"]) if obj.get("timestamp") else None,
            source=Source.from_dict(obj.get("source") if isinstance(obj.get("source"), dict) else None),
            tags=tuple(str(t) for t in tags) if isinstance(tags, list) else tuple(extract_tags(content)),
            word_count=word_count if isinstance(word_count, int) else count_words(content),
            format_version=str(obj.get("formatVersion") or LEGACY_FORMAT_VERSION),
        )


def now_iso() -> str:
    """current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """parse an ISO-8601 string into an aware datetime; naive values are taken as UTC. raises ValueError."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def generate_id() -> str:
    # time part keeps ids roughly sortable across restarts, random part keeps them unique within a millisecond
    return "mem_" + to_base36(int(time.time() * 1000)) + to_base36(secrets.randbits(52))


def count_words(text: str) -> int:
    """number of whitespace-delimited tokens; 0 means the text is blank."""
    return len(text.split())


def extract_tags(content: str) -> list[str]:
    tags: list[str] = list(_HASHTAG.findall(content))
    if any(hint in content for hint in _CODE_HINTS):
        tags.append("code")
    if any(hint in content for hint in _TODO_HINTS):
        tags.append("todo")
    if any(hint in content for hint in _URL_HINTS):
        tags.append("url")
    return list(dict.fromkeys(tags))  # dedupe, keep first-seen order


def build_record(
    content: str,
    source: Source,
    supplied_hash: str | None = None,
    format_version: str = DEFAULT_FORMAT_VERSION,
) -> MemoryRecord:
    """
    build a new record for content captured from source.

    a caller-supplied hash is trusted as-is (the producer already computed it with the same function);
    a buggy producer can desynchronize hash and content, which is acceptable for a local tool.
    """
    return MemoryRecord(
        id=generate_id(),
        content=content,
        content_hash=supplied_hash or content_hash(content),
        timestamp=now_iso(),
        source=source,
        tags=tuple(extract_tags(content)),
        word_count=count_words(content),
        format_version=format_version,
    )
