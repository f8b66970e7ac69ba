#!/usr/bin/env python3
"""
Response Cache - content-addressed, TTL-bounded storage for HTTP responses

Architecture:
    ResponseCache (Public API)
        ├── CacheKey   (deterministic fingerprint of method/path/body/headers)
        ├── CacheEntry (serialized response bytes + expiry)
        └── OrderedDict storage (insertion order == age order)

Semantics:
    - Expired entries are treated as absent on read (lazy expiry)
    - Writes under pressure purge expired entries first, then the oldest entry
    - Every insertion carries exactly one TTL
    - Responses above ``max_response_size`` are never stored

Request bodies are canonicalized with orjson (sorted keys) before hashing so
that two dicts with the same content but different key order share a key.

Author: System Architect
Date: 2025-12-10
"""

import asyncio
import hashlib
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field

from llm_reliability.core.config.constants import (
    DEFAULT_CACHE_CLEANUP_INTERVAL,
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_MAX_RESPONSE_SIZE,
    DEFAULT_CACHE_TTL,
)
from llm_reliability.core.config.settings import get_settings
from llm_reliability.core.exceptions import CacheEntryTooLargeError, SerializationError
from llm_reliability.core.logging.logger import get_logger

logger = get_logger(__name__)

_EMPTY_HASH = hashlib.sha256(b"").hexdigest()


class CacheConfig(BaseModel):
    """Sizing and expiry policy of the response cache."""

    max_entries: int = Field(default=DEFAULT_CACHE_MAX_ENTRIES, gt=0)
    default_ttl: float = Field(default=DEFAULT_CACHE_TTL, gt=0)
    max_response_size: int = Field(default=DEFAULT_CACHE_MAX_RESPONSE_SIZE, gt=0)
    cleanup_interval: float = Field(default=DEFAULT_CACHE_CLEANUP_INTERVAL, gt=0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls) -> "CacheConfig":
        cache = get_settings().cache
        return cls(
            max_entries=cache.CACHE_MAX_ENTRIES,
            default_ttl=cache.CACHE_DEFAULT_TTL,
            max_response_size=cache.CACHE_MAX_RESPONSE_SIZE,
            cleanup_interval=cache.CACHE_CLEANUP_INTERVAL,
        )


def canonical_json(value: Any) -> bytes:
    """
    Serialize ``value`` with sorted keys so equal payloads hash identically.

    Raises:
        SerializationError: Value is not JSON-serializable
    """
    try:
        return orjson.dumps(value, option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS)
    except TypeError as exc:
        raise SerializationError.from_exception(
            exc, message="Request body is not JSON-serializable", operation="cache_key"
        ) from exc


@dataclass(frozen=True)
class CacheKey:
    """
    Deterministic fingerprint of a request.

    Method is upper-cased; body and header subset are hashed so the key stays
    small regardless of payload size.
    """

    method: str
    path: str
    body_hash: str = _EMPTY_HASH
    headers_hash: str = _EMPTY_HASH

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> "CacheKey":
        body_hash = _EMPTY_HASH if body is None else hashlib.sha256(canonical_json(body)).hexdigest()
        headers_hash = _EMPTY_HASH
        if headers:
            normalized = {k.lower(): v for k, v in headers.items()}
            headers_hash = hashlib.sha256(canonical_json(normalized)).hexdigest()
        return cls(method=method.upper(), path=path, body_hash=body_hash, headers_hash=headers_hash)

    @property
    def fingerprint(self) -> str:
        raw = f"{self.method}\n{self.path}\n{self.body_hash}\n{self.headers_hash}"
        return hashlib.sha256(raw.encode()).hexdigest()


@dataclass
class CacheEntry:
    data: bytes
    ttl: float
    method: str
    path: str
    created_at: float = field(default_factory=time.monotonic)
    hit_count: int = 0

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class CacheStatistics(BaseModel):
    total_requests: int
    hits: int
    misses: int
    hit_ratio: float
    current_entries: int
    total_cached_bytes: int
    average_ttl_seconds: float
    expired_entries_cleaned: int
    evictions: int
    average_response_size: float


class ResponseCache:
    """
    In-memory response cache keyed by ``CacheKey``.

    STAGE-RC: Response caching

    Thread-safety: every mutation happens under an ``asyncio.Lock``.
    """

    def __init__(self, config: CacheConfig | None = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task | None = None

        self._hits = 0
        self._misses = 0
        self._expired_cleaned = 0
        self._evictions = 0

    async def get(self, key: CacheKey) -> bytes | None:
        """
        Return cached bytes for ``key``, or None on miss or expiry.

        STAGE-RC.1: Cache lookup
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                self._expired_cleaned += 1
                logger.debug("Cache entry expired", method=key.method, path=key.path, stage="RC.1")
                return None

            entry.hit_count += 1
            self._hits += 1
            return entry.data

    async def put(self, key: CacheKey, data: bytes, ttl: float | None = None) -> None:
        """
        Store ``data`` under ``key`` for ``ttl`` seconds (default TTL if None).

        STAGE-RC.2: Cache store

        Raises:
            CacheEntryTooLargeError: ``data`` exceeds ``max_response_size``
        """
        if len(data) > self.config.max_response_size:
            raise CacheEntryTooLargeError(
                f"Response of {len(data)} bytes exceeds cache limit",
                details={
                    "operation": "cache_put",
                    "size_bytes": len(data),
                    "max_response_size": self.config.max_response_size,
                    "path": key.path,
                },
            )

        ttl = self.config.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        async with self._lock:
            self._entries.pop(key, None)

            if len(self._entries) >= self.config.max_entries:
                self._purge_expired_locked()
            while len(self._entries) >= self.config.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Cache entry evicted", method=evicted_key.method, path=evicted_key.path, stage="RC.2")

            self._entries[key] = CacheEntry(
                data=data, ttl=ttl, method=key.method, path=key.path, created_at=self._clock()
            )

    async def invalidate(self, key: CacheKey) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def cleanup_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        async with self._lock:
            removed = self._purge_expired_locked()
        if removed:
            logger.debug("Expired cache entries cleaned", removed=removed, stage="RC.3")
        return removed

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
        logger.info("Response cache cleared", stage="RC.4")

    def get_statistics(self) -> CacheStatistics:
        total_requests = self._hits + self._misses
        entries = list(self._entries.values())
        total_bytes = sum(e.size_bytes for e in entries)
        return CacheStatistics(
            total_requests=total_requests,
            hits=self._hits,
            misses=self._misses,
            hit_ratio=self._hits / total_requests if total_requests else 0.0,
            current_entries=len(entries),
            total_cached_bytes=total_bytes,
            average_ttl_seconds=sum(e.ttl for e in entries) / len(entries) if entries else 0.0,
            expired_entries_cleaned=self._expired_cleaned,
            evictions=self._evictions,
            average_response_size=total_bytes / len(entries) if entries else 0.0,
        )

    # ------------------------------------------------------------------------
    # Background maintenance
    # ------------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic expired-entry sweep (idempotent)."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def aclose(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            await self.cleanup_expired()

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        self._expired_cleaned += len(expired)
        return len(expired)
