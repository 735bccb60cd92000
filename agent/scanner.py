# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the scanning agent. takes the visible text of a page, pulls the [MCP-START]/[MCP-END] blocks out of it,
fingerprints them, keeps a local buffer of everything captured, and ships new blocks to the bridge.

flow of one scan
1. extract blocks from the page text, drop empty ones
2. fingerprint each block and drop the ones this agent already knows about (or that repeat on the page)
3. ask the bridge which fingerprints it already stores, those become "known" without being buffered
   (if the bridge is unreachable the pre-check is skipped and everything new is kept)
4. buffer the new blocks and, when auto_send is on, post them to /store
5. a block is only marked sent once the bridge answered successfully

the known-hash set lives only in this process and is never reconciled with the bridge; if the bridge store is
cleared the agent will not resend blocks it already saw until clear_buffers() is called.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # agent logger
import threading  # lock around the buffer plus optional background sender
from collections.abc import Callable  # type hint for the notify callback
from dataclasses import dataclass, field  # for buffered block records
from typing import Any  # type hint for flexible dictionary values

from agent.block_extractor import extract_blocks  # strict marker parser
from agent.client import IngestionClient, RemoteUnavailable  # HTTP side of the agent
from algorithm.content_hash import content_hash  # block fingerprint
from store.records import DEFAULT_FORMAT_VERSION, Source, count_words, now_iso

# type alias for the notify callback, takes an event dict and returns nothing
NotifyFn = Callable[[dict[str, Any]], None]

agent_logger = logging.getLogger("memcap.agent")


@dataclass
class BufferedBlock:
    content: str  # trimmed block text
    hash: str  # content fingerprint
    word_count: int  # whitespace separated tokens
    captured_at: str  # when the agent picked the block up (ISO-8601 UTC)
    source: Source = field(default_factory=Source)  # page the block came from
    sent: bool = False  # True once the bridge accepted the batch holding this block
    sent_at: str | None = None  # when it was marked sent
    server_checked: bool = False  # True if the bridge pre-check ran for this block

    def to_payload(self, format_version: str = DEFAULT_FORMAT_VERSION) -> dict[str, Any]:
        # shape POST /store expects for one block
        return {
            "content": self.content,
            "hash": self.hash,
            "wordCount": self.word_count,
            "timestamp": self.captured_at,
            "formatVersion": format_version,
        }


class MemoryScanner:
    def __init__(
        self,
        client: IngestionClient | None = None,
        notify: NotifyFn | None = None,
        auto_send: bool = True,
        background_send: bool = False,
        format_version: str = DEFAULT_FORMAT_VERSION,
    ) -> None:
        self.client = client  # None means capture only, nothing is transmitted
        self.notify = notify  # optional callback for user facing messages
        self.auto_send = auto_send  # transmit right after each scan
        self.background_send = background_send  # transmit on a daemon thread instead of inline
        self.format_version = format_version  # stamped on every block sent
        self._lock = threading.Lock()  # guards the buffer and the known set
        self._buffer: list[BufferedBlock] = []  # everything captured, in capture order
        self._known: set[str] = set()  # fingerprints already captured here or already on the bridge

    # notifications

    def _emit(self, level: str, message: str) -> None:
        if level == "error":
            agent_logger.warning(message)
        else:
            agent_logger.info(message)
        if self.notify is None:
            return
        try:
            self.notify({"source": "agent", "level": level, "message": message})
        except Exception:
            # a broken notification sink must not break the scan
            agent_logger.exception("notify callback failed")

    # scanning

    def scan(self, page_text: str, source: Source | None = None) -> int:
        """capture new blocks from page_text; returns how many were newly buffered."""
        source = source or Source()
        captured_at = now_iso()  # one capture time for the whole page

        candidates: list[BufferedBlock] = []
        seen: set[str] = set()  # fingerprints already taken from this page
        with self._lock:
            known = set(self._known)  # snapshot so the network call runs without the lock
        for content in extract_blocks(page_text):
            if not content:
                continue  # empty blocks are dropped here, never buffered
            h = content_hash(content)
            if h in known or h in seen:
                continue
            seen.add(h)
            candidates.append(
                BufferedBlock(
                    content=content,
                    hash=h,
                    word_count=count_words(content),
                    captured_at=captured_at,
                    source=source,
                )
            )

        if not candidates:
            return 0

        fresh = candidates
        if self.client is not None:
            try:
                status = self.client.check_hashes(b.hash for b in candidates)
            except RemoteUnavailable as e:
                # bridge is down, keep everything and let the store endpoint deduplicate later
                agent_logger.warning(f"Hash pre-check failed, keeping all blocks: {e}")
            else:
                server_known = {b.hash for b in candidates if status.get(b.hash)}
                fresh = [b for b in candidates if b.hash not in server_known]
                for b in fresh:
                    b.server_checked = True
                with self._lock:
                    self._known.update(server_known)

        with self._lock:
            # another scan may have captured the same block while we were waiting on the bridge
            fresh = [b for b in fresh if b.hash not in self._known]
            self._buffer.extend(fresh)
            self._known.update(b.hash for b in fresh)

        if not fresh:
            return 0
        self._emit("info", f"Captured {len(fresh)} new memory blocks")

        if self.auto_send and self.client is not None:
            if self.background_send:
                t = threading.Thread(target=self._transmit, args=(fresh, source), daemon=True)
                t.start()
            else:
                self._transmit(fresh, source)
        return len(fresh)

    # sending

    def _transmit(self, blocks: list[BufferedBlock], source: Source) -> dict[str, Any]:
        if self.client is None:
            return {"sent": 0, "error": "no client configured"}
        payload = [b.to_payload(self.format_version) for b in blocks]
        try:
            resp = self.client.store_batch(payload, source)
        except RemoteUnavailable as e:
            self._emit("error", f"Failed to send {len(blocks)} blocks: {e}")
            return {"sent": 0, "error": str(e)}

        sent_at = now_iso()
        with self._lock:
            for b in blocks:
                b.sent = True
                b.sent_at = sent_at
        stored = resp.get("stored", 0)
        dupes = resp.get("duplicates", 0)
        self._emit("success", f"Sent {len(blocks)} blocks ({stored} stored, {dupes} duplicates)")
        return {"sent": len(blocks), "stored": stored, "duplicates": dupes}

    def send_pending(self) -> dict[str, Any]:
        """retransmit every unsent block, grouped by the page it came from."""
        unsent = self.pending()
        if not unsent:
            return {"sent": 0, "pending": 0}
        if self.client is None:
            return {"sent": 0, "pending": len(unsent), "error": "no client configured"}

        groups: dict[Source, list[BufferedBlock]] = {}
        for b in unsent:
            groups.setdefault(b.source, []).append(b)

        sent = 0
        errors: list[str] = []
        for src, blocks in groups.items():
            out = self._transmit(blocks, src)
            sent += out.get("sent", 0)
            if "error" in out:
                errors.append(out["error"])

        result: dict[str, Any] = {"sent": sent, "pending": len(self.pending())}
        if errors:
            result["error"] = "; ".join(errors)
        return result

    # buffer management

    def pending(self) -> list[BufferedBlock]:
        with self._lock:
            return [b for b in self._buffer if not b.sent]

    def clear_buffers(self) -> int:
        """drop every captured block and forget every known fingerprint; returns how many blocks were dropped."""
        with self._lock:
            n = len(self._buffer)
            self._buffer.clear()
            self._known.clear()
        self._emit("info", f"Cleared {n} buffered blocks")
        return n

    def buffer_summary(self, preview_chars: int = 100) -> dict[str, Any]:
        with self._lock:
            blocks = list(self._buffer)
        sent = sum(1 for b in blocks if b.sent)
        return {
            "total": len(blocks),
            "sent": sent,
            "pending": len(blocks) - sent,
            "knownHashes": len(self._known),
            "blocks": [
                {
                    "hash": b.hash,
                    "preview": b.content[:preview_chars] + ("..." if len(b.content) > preview_chars else ""),
                    "wordCount": b.word_count,
                    "capturedAt": b.captured_at,
                    "sent": b.sent,
                    "sentAt": b.sent_at,
                    "serverChecked": b.server_checked,
                }
                for b in blocks
            ],
        }

    def status(self) -> dict[str, Any]:
        """bridge health as the agent sees it."""
        if self.client is None:
            return {"status": "offline", "error": "no client configured"}
        try:
            return self.client.health()
        except RemoteUnavailable as e:
            return {"status": "offline", "error": str(e)}
