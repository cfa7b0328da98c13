"""Fixed-window rate limiter for the prepare-run API."""

import time
from dataclasses import dataclass


@dataclass
class _Window:
    started_at: float
    count: int


class FixedWindowRateLimiter:
    """Allow at most `limit` hits per client within each `window_seconds` window.

    A client's window starts at its first hit and resets once it has fully
    elapsed. Expired windows are dropped lazily on later hits, so memory stays
    proportional to the number of clients seen in the last window.
    """

    def __init__(self, limit: int, window_seconds: float) -> None:
        self._limit = limit
        self._window_seconds = window_seconds
        self._windows: dict[str, _Window] = {}
        self._last_sweep = time.monotonic()

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def hit(self, client_key: str) -> bool:
        """Record one request. Returns True if allowed, False if over the limit."""
        now = time.monotonic()
        self._sweep(now)

        window = self._windows.get(client_key)
        if window is None or now - window.started_at >= self._window_seconds:
            self._windows[client_key] = _Window(started_at=now, count=1)
            return True

        if window.count >= self._limit:
            return False
        window.count += 1
        return True

    def retry_after(self, client_key: str) -> int:
        """Whole seconds until client_key's current window resets (0 if none)."""
        window = self._windows.get(client_key)
        if window is None:
            return 0
        remaining = self._window_seconds - (time.monotonic() - window.started_at)
        return max(0, int(remaining + 0.999))

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self._window_seconds:
            return
        self._last_sweep = now
        expired = [key for key, w in self._windows.items() if now - w.started_at >= self._window_seconds]
        for key in expired:
            del self._windows[key]
