"""A size-bounded LRU cache whose entries expire after a time to live."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

DEFAULT_CLEANUP_INTERVAL = 10.0
DEFAULT_SIZE = 10_000

OnExpired = Callable[[str], "tuple[Optional[Any], float]"]


@dataclass
class _Entry:
    value: Any
    expires_at: float


class ExpiringLRUCache:
    """LRU cache with per-entry expiry and periodic background cleanup.

    Expired entries stay readable (with a remaining TTL of zero) until the next
    cleanup, which either refreshes them through ``on_expired`` or drops them.
    """

    def __init__(
        self,
        *,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        on_expired: Optional[OnExpired] = None,
        max_size: int = DEFAULT_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max_size if max_size > 0 else DEFAULT_SIZE
        self._on_expired = on_expired
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._worker = threading.Thread(
            target=self._run_cleanup, args=(cleanup_interval,), daemon=True
        )
        self._worker.start()

    def _run_cleanup(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.cleanup()

    def put(self, key: str, value: Any, ttl: float) -> None:
        """Store value for ttl seconds; a ttl <= 0 stores nothing."""
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = _Entry(value, self._clock() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def get(self, key: str) -> tuple[Any, float]:
        """Return (value, remaining TTL in seconds), or (None, 0.0) if absent."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, 0.0
            self._entries.move_to_end(key)
            remaining = entry.expires_at - self._clock()
            return entry.value, remaining if remaining > 0 else 0.0

    def contains(self, key: str) -> bool:
        """Check for a key without touching its recency."""
        with self._lock:
            return key in self._entries

    def total_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> None:
        """Refresh or remove every expired entry."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
        to_delete = []
        for key in expired:
            if self._on_expired is not None:
                value, ttl = self._on_expired(key)
                if value is not None:
                    self.put(key, value, ttl)
                    continue
            to_delete.append(key)
        with self._lock:
            for key in to_delete:
                self._entries.pop(key, None)

    def close(self) -> None:
        """Stop the background cleanup."""
        self._stop.set()
        if self._worker is not threading.current_thread():
            self._worker.join()

    def __enter__(self) -> "ExpiringLRUCache":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()