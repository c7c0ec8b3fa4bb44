"""
Admission control in front of tour generation: idempotency keys and a
per-device fixed-window rate limit.

Both sit on a small TTL key-value interface so the in-process dict can be
swapped for a shared cache without touching callers. Every check-and-write
is a single store call, so concurrent requests cannot both pass. State is
process-local and lost on restart.
"""
import math
import threading
import time
from typing import Any, Callable, Dict, NamedTuple, Optional, Protocol, Tuple


class TTLStore(Protocol):
    def get(self, key: str) -> Any: ...
    def set(self, key: str, value: Any, ttl_seconds: float) -> None: ...
    def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> Any: ...
    def incr(self, key: str, ttl_seconds: float) -> Tuple[int, float]: ...
    def delete(self, key: str) -> None: ...


class InMemoryTTLStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._data: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[Any, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self.clock():
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._data[key] = (value, self.clock() + ttl_seconds)

    def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> Any:
        """Store value unless key is live; returns the existing value, or None if stored."""
        with self._lock:
            entry = self._live(key)
            if entry is not None:
                return entry[0]
            self._data[key] = (value, self.clock() + ttl_seconds)
            return None

    def incr(self, key: str, ttl_seconds: float) -> Tuple[int, float]:
        """
        Add one to a counter, starting it at 1 with ttl_seconds if absent.
        Increments keep the original expiry. Returns (count, seconds left).
        """
        with self._lock:
            now = self.clock()
            entry = self._live(key)
            if entry is None:
                count, expires = 1, now + ttl_seconds
            else:
                count, expires = entry[0] + 1, entry[1]
            self._data[key] = (count, expires)
            return count, expires - now

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class IdempotencyGuard:
    def __init__(self, store: TTLStore, ttl_seconds: float = 24 * 3600):
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(key: str) -> str:
        return f"idem:{key}"

    def reserve(self, key: str, job_id: str) -> Optional[str]:
        """Claim key for job_id. Returns the job id already holding it, or None if claimed."""
        return self.store.set_if_absent(self._key(key), job_id, self.ttl_seconds)

    def release(self, key: str) -> None:
        self.store.delete(self._key(key))


class RateDecision(NamedTuple):
    allowed: bool
    retry_after: Optional[int] = None


class RateLimiter:
    """Fixed window per device; the window opens on the first request."""

    def __init__(self, store: TTLStore, limit: int = 5, window_seconds: float = 3600):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    def hit(self, device_id: str) -> RateDecision:
        count, remaining = self.store.incr(f"rate:{device_id}", self.window_seconds)
        if count > self.limit:
            retry_after = max(1, min(int(self.window_seconds), math.ceil(remaining)))
            return RateDecision(False, retry_after)
        return RateDecision(True)
