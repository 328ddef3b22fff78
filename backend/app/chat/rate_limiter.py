"""Sliding-window send throttle keyed by (user, room).

This is a hard cap, not a token bucket: at most ``max_events`` sends are
accepted within any trailing ``window_ms`` interval, so a burst is cut off
exactly at the cap instead of being smoothed.

History per key lives in a ``deque(maxlen=max_events)``. Only the newest
``max_events`` acceptances can ever affect a decision, so nothing older is
kept.
"""
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional, Tuple


def now_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000


class SlidingWindowLimiter:
    """Per-(user, room) sliding window rate limiter.

    Args:
        max_events: Sends allowed per window.
        window_ms: Window length in milliseconds.
    """

    def __init__(self, max_events: int, window_ms: int) -> None:
        if max_events <= 0 or window_ms <= 0:
            raise ValueError("max_events and window_ms must be positive")
        self.max_events = max_events
        self.window_ms = window_ms
        self._windows: Dict[Tuple[int, int], Deque[float]] = {}
        self._lock = threading.Lock()

    def allow(self, user_id: int, room_id: int, now: Optional[float] = None) -> bool:
        """Record a send attempt and decide whether it is accepted.

        Entries at or before ``now - window_ms`` are pruned first. A rejected
        attempt is not recorded.

        Args:
            user_id: Sender.
            room_id: Target room.
            now: Current time in milliseconds; defaults to the monotonic clock.
        """
        if now is None:
            now = now_ms()
        cutoff = now - self.window_ms
        key = (user_id, room_id)

        with self._lock:
            window = deque(
                (ts for ts in self._windows.get(key, ()) if ts > cutoff),
                maxlen=self.max_events,
            )
            self._windows[key] = window

            if len(window) >= self.max_events:
                return False

            window.append(now)
            return True

    def reset(self) -> None:
        """Forget all history (for testing)."""
        with self._lock:
            self._windows.clear()
