"""
Response cache for repeated utterances.

Process-wide, in-memory and advisory: a miss is always safe and a failing
lookup behaves like a miss. Entries expire after a TTL and the cache is
bounded by least-recently-used eviction.
"""

import random
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Pattern

import structlog

from .config import get_settings

logger = structlog.get_logger()

_WHITESPACE = re.compile(r"\s+")


def normalize_utterance(text: str) -> str:
    """Lowercase and collapse whitespace."""
    return _WHITESPACE.sub(" ", (text or "").strip().lower())


@dataclass
class UtteranceCacheEntry:
    """A cached reply for one normalized utterance."""

    normalized_key: str
    reply_text: str
    language: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or time.time()) >= self.expires_at


@dataclass
class CannedReply:
    """A pattern that answers matching utterances without inference."""

    pattern: Pattern[str]
    replies: List[str]
    ttl_s: float


@dataclass
class CacheMetrics:
    """Hit/miss counters."""

    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total, 2) if total else 0.0


class ResponseCache:
    """Thread-safe keyed lookup from normalized utterance text to a reply."""

    def __init__(
        self,
        ttl_s: float = 3600.0,
        max_entries: int = 1000,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, UtteranceCacheEntry]" = OrderedDict()
        self._patterns: List[CannedReply] = []
        self._lock = threading.Lock()
        self._metrics = CacheMetrics()
        self.logger = logger.bind(component="response_cache")

    def get(self, utterance: str, language: Optional[str] = None) -> Optional[str]:
        """Return a cached reply, or None on a miss."""
        try:
            return self._lookup(utterance, language)
        except Exception as e:
            self.logger.warning("Cache lookup failed, treating as miss", error=str(e))
            return None

    def _lookup(self, utterance: str, language: Optional[str]) -> Optional[str]:
        key = normalize_utterance(utterance)
        if not key:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.is_expired():
                    del self._entries[key]
                elif self._language_matches(entry.language, language):
                    self._entries.move_to_end(key)
                    self._metrics.hits += 1
                    self.logger.debug("Cache hit", key=key)
                    return entry.reply_text

            for canned in self._patterns:
                if canned.pattern.search(key):
                    reply = random.choice(canned.replies)
                    self._store(key, reply, language, canned.ttl_s)
                    self._metrics.hits += 1
                    self.logger.debug("Pattern hit", key=key)
                    return reply

            self._metrics.misses += 1
            return None

    def put(
        self,
        utterance: str,
        reply: str,
        language: Optional[str] = None,
        ttl_s: Optional[float] = None,
    ) -> None:
        """Store a reply for an utterance. Never raises."""
        try:
            key = normalize_utterance(utterance)
            if not key or not reply:
                return
            with self._lock:
                self._store(key, reply, language, ttl_s or self.ttl_s)
        except Exception as e:
            self.logger.warning("Cache write failed", error=str(e))

    def _store(self, key: str, reply: str, language: Optional[str], ttl_s: float) -> None:
        now = time.time()
        self._entries[key] = UtteranceCacheEntry(
            normalized_key=key,
            reply_text=reply,
            language=language,
            created_at=now,
            expires_at=now + ttl_s,
        )
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    @staticmethod
    def _language_matches(cached: Optional[str], current: Optional[str]) -> bool:
        return not cached or not current or cached == current

    def add_pattern(
        self,
        pattern: str,
        replies: List[str],
        ttl_s: Optional[float] = None,
    ) -> None:
        """Register canned replies for utterances matching a regex."""
        if not replies:
            raise ValueError("At least one reply is required")
        with self._lock:
            self._patterns.append(
                CannedReply(
                    pattern=re.compile(pattern, re.IGNORECASE),
                    replies=list(replies),
                    ttl_s=ttl_s or self.ttl_s,
                )
            )

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = time.time()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.info("Cleaned up expired entries", count=len(expired))
        return len(expired)

    def clear(self) -> None:
        """Remove all entries (patterns are kept)."""
        with self._lock:
            self._entries.clear()

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics

    def __len__(self) -> int:
        return len(self._entries)


@lru_cache
def get_response_cache() -> ResponseCache:
    """Get the process-wide response cache."""
    settings = get_settings()
    return ResponseCache(
        ttl_s=settings.cache_ttl_s,
        max_entries=settings.cache_max_entries,
    )
