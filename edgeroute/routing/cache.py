import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from edgeroute.http import EdgeResponse
from edgeroute.routing.behaviors import CacheBehavior, CacheKey

DEFAULT_MAX_ENTRIES = 1024
_MAX_AGE_RE = re.compile(r"(?:^|,)\s*s-maxage\s*=\s*(\d+)|(?:^|,)\s*max-age\s*=\s*(\d+)", re.I)
_UNCACHEABLE_DIRECTIVES = ("no-store", "no-cache", "private")


def response_ttl(response: EdgeResponse, behavior: CacheBehavior) -> int:
    """Time to live for ``response`` under ``behavior``, in seconds.

    Origin Cache-Control max-age (or s-maxage) is honoured within the
    behavior's [min_ttl, max_ttl] range; without it default_ttl applies.
    """
    cache_control = response.headers.get("Cache-Control", "").lower()
    if any(directive in cache_control for directive in _UNCACHEABLE_DIRECTIVES):
        return 0
    matches = _MAX_AGE_RE.findall(cache_control)
    # s-maxage targets shared caches and wins over max-age.
    ages = [int(s) for s, _ in matches if s] or [int(m) for _, m in matches if m]
    if not ages:
        return behavior.default_ttl
    return max(behavior.min_ttl, min(ages[0], behavior.max_ttl))


@dataclass(frozen=True)
class _Entry:
    response: EdgeResponse
    expires_at: float


class ResponseCache:
    """In-memory LRU cache of origin responses keyed by CacheKey."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> EdgeResponse | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.response

    def put(self, key: CacheKey, response: EdgeResponse, ttl: int) -> bool:
        if ttl <= 0:
            return False
        with self._lock:
            self._entries[key] = _Entry(response, self._clock() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
