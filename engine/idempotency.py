from __future__ import annotations

import time


class SignalDeduplicator:
    """Short-lived fingerprint cache: TradingView often fires the same alert twice within a second."""

    def __init__(self, ttl: float = 5.0, max_keys: int = 100) -> None:
        self.ttl = ttl
        self.max_keys = max_keys
        self._seen: dict[str, float] = {}

    @staticmethod
    def fingerprint(symbol: str, side: str, action: str | None = None, *details: object) -> str:
        # every field takes part, so only identical alerts collide
        parts = [symbol, side, action or "", *("" if d is None else str(d) for d in details)]
        return "|".join(parts).upper()

    def _evict(self, now: float) -> None:
        expired = [key for key, ts in self._seen.items() if now - ts >= self.ttl]
        for key in expired:
            del self._seen[key]
        while len(self._seen) > self.max_keys:
            self._seen.pop(next(iter(self._seen)))

    def exists(self, key: str, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        self._evict(now)
        return key in self._seen

    def add(self, key: str, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        self._seen.pop(key, None)
        self._seen[key] = now
        self._evict(now)

    def check_and_add(self, key: str, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        if self.exists(key, now):
            return False
        self.add(key, now)
        return True
