"""
In-process guards in front of the model: a TTL response cache and a
sliding-window per-user rate limiter.  Both are plain objects injected into
`services.plan_agents.AIGateway`; nothing here is a global.
"""

from __future__ import annotations

import hashlib
import time
from collections import OrderedDict, deque
from typing import Any, Callable


class ResponseCache:
    def __init__(
        self,
        ttl_s: float = 30 * 60,
        capacity: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_s
        self._cap = capacity
        self._clock = clock
        self._items: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    @staticmethod
    def key(prompt: str, model: str, temperature: float) -> str:
        return hashlib.sha256(f"{model}:{temperature}:{prompt}".encode()).hexdigest()

    def get(self, key: str) -> Any | None:
        hit = self._items.get(key)
        if hit is None:
            return None
        stamp, value = hit
        if self._clock() - stamp > self._ttl:
            del self._items[key]
            return None
        self._items.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._items[key] = (self._clock(), value)
        self._items.move_to_end(key)
        while len(self._items) > self._cap:
            self._items.popitem(last=False)

    def __len__(self) -> int:
        return len(self._items)


class RateLimiter:
    WINDOW_S = 60 * 60

    def __init__(
        self,
        max_requests: int = 100,
        window_s: float = WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max = max_requests
        self._window = window_s
        self._clock = clock
        self._seen: dict[str, deque[float]] = {}

    def _live(self, user_key: str) -> deque[float]:
        q = self._seen.setdefault(user_key, deque())
        now = self._clock()
        while q and now - q[0] >= self._window:
            q.popleft()
        return q

    def allow(self, user_key: str) -> bool:
        q = self._live(user_key)
        if len(q) >= self._max:
            return False
        q.append(self._clock())
        return True

    def remaining(self, user_key: str) -> int:
        return max(0, self._max - len(self._live(user_key)))
