"""
Result Cache

In-memory store of finalized per-file reports.
Key = "filePath|content16|rules16" (see cache_key). Any other cache
consumer must build keys the same way or hits silently diverge.

Only the sequential per-file driver reads and writes the cache; rule
workers never touch it.

Usage:
    from groundlint.cache import cache_key, ResultCache
    key = cache_key(path, content, rules)
    cached = await cache.get(key)
    if cached:
        return cached
    report = await lint_file(...)
    await cache.put(key, report)
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from typing import Optional, Sequence

from groundlint.schemas.results import FileReport
from groundlint.schemas.rules import Rule

HASH_TRUNCATE_LENGTH = 16


def hash_content(content: str) -> str:
    """
    SHA-256 of normalized content: CRLF -> LF, then trimmed.

    Changing the normalization invalidates every existing key.
    """
    normalized = content.replace("\r\n", "\n").strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def hash_rules(rules: Sequence[Rule]) -> str:
    """SHA-256 over every rule's id, metadata and body, sorted by id."""
    parts = []
    for rule in sorted(rules, key=lambda r: r.id):
        meta = rule.model_dump(mode="json", exclude={"body", "pack"})
        parts.append({
            "id": rule.id,
            "meta": json.dumps(meta, sort_keys=True, separators=(",", ":")),
            "body": rule.body.strip(),
            "pack": rule.pack,
        })
    serialized = json.dumps(parts, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def cache_key(file_path: str, content: str, rules: Sequence[Rule]) -> str:
    return (
        f"{file_path}"
        f"|{hash_content(content)[:HASH_TRUNCATE_LENGTH]}"
        f"|{hash_rules(rules)[:HASH_TRUNCATE_LENGTH]}"
    )


class ResultCache:
    """Async-safe in-memory cache with optional TTL and size-bound eviction."""

    def __init__(self, ttl_seconds: Optional[float] = None, max_entries: int = 500):
        self._cache: dict[str, tuple[float, FileReport]] = {}
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> Optional[FileReport]:
        """Return a copy of the cached report if present and not expired."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            ts, report = entry
            if self._ttl is not None and time.monotonic() - ts > self._ttl:
                del self._cache[key]
                self._misses += 1
                return None

            self._hits += 1
            return report.model_copy(deep=True)

    async def put(self, key: str, report: FileReport) -> None:
        """Store a finalized report. Evicts the oldest entry when full."""
        async with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_entries:
                oldest_key = min(self._cache, key=lambda k: self._cache[k][0])
                del self._cache[oldest_key]

            self._cache[key] = (time.monotonic(), report.model_copy(deep=True))

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._cache.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    @property
    def stats(self) -> dict:
        """Cache hit/miss statistics."""
        total = self._hits + self._misses
        return {
            "entries": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 3) if total > 0 else 0.0,
        }
