"""
gateway/services/throttle.py

Keyed throttle with a bounded TTL cache. Instances are created in the app
lifespan and injected through gateway/dependencies.py.
"""

import time
from collections import OrderedDict
from typing import Callable


class Throttle:
    """Allow a key at most once per interval_seconds."""

    def __init__(
        self,
        interval_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._last_seen: OrderedDict[str, float] = OrderedDict()

    def allow(self, key: str) -> bool:
        """Return True and record the hit if key is outside its interval."""
        now = self._clock()
        self._evict(now)
        previous = self._last_seen.get(key)
        if previous is not None and now - previous < self.interval_seconds:
            return False
        self._last_seen[key] = now
        self._last_seen.move_to_end(key)
        while len(self._last_seen) > self.max_entries:
            self._last_seen.popitem(last=False)
        return True

    def reset(self) -> None:
        self._last_seen.clear()

    def __len__(self) -> int:
        return len(self._last_seen)

    def _evict(self, now: float) -> None:
        # Entries are ordered by last hit, oldest first.
        while self._last_seen:
            key, seen_at = next(iter(self._last_seen.items()))
            if now - seen_at < self.interval_seconds:
                break
            del self._last_seen[key]
