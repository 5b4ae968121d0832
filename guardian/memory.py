"""Thread-safe bounded deduplication cache for collected events.

The same notification is often posted several times in a row (updates,
re-posts, group summaries). Each distinct text is triaged at most once per
time bucket: the fingerprint is SHA-256(raw text) + "_" + bucket index,
where bucket = floor(now / window_seconds).

Entries live in an explicit OrderedDict kept in recency order. Inserting
past capacity evicts the least recently used entry and reports it to the
optional eviction callback.
"""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY: int = 50
DEFAULT_WINDOW_SECONDS: int = 600


class DedupCache:
    """Bounded LRU set of event fingerprints."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        on_evict: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self._capacity = capacity
        self._window = window_seconds
        self._on_evict = on_evict
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def fingerprint(self, text: str) -> str:
        digest = hashlib.sha256((text or "").encode("utf-8")).hexdigest()
        bucket = int(self._clock() // self._window)
        return f"{digest}_{bucket}"

    def check_and_add(self, text: str) -> Optional[str]:
        """
        Record the text for the current bucket.

        Returns the new fingerprint, or None when the same text was already
        seen in this bucket (the entry is refreshed as most recently used).
        """
        key = self.fingerprint(text)
        evicted = None
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self._hits += 1
                return None
            self._misses += 1
            self._entries[key] = self._clock()
            if len(self._entries) > self._capacity:
                evicted, _ = self._entries.popitem(last=False)

        if evicted is not None and self._on_evict is not None:
            try:
                self._on_evict(evicted)
            except Exception as exc:
                logger.warning(f"Dedup eviction callback failed for [{evicted[:8]}]: {exc}")
        return key

    def discard(self, fingerprint: str) -> bool:
        """Forget a fingerprint so the same text can be processed again."""
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self._capacity,
                "window_seconds": self._window,
                "hits": self._hits,
                "misses": self._misses,
            }
