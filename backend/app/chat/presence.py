"""Reference-counted presence tracking.

A user with N live connections (tabs, devices) is reported online once, on
the first connect, and offline once, on the last disconnect. Only the 0 <-> 1
edges are reported; every intermediate connect/disconnect is silent.
"""
import threading
from typing import Dict


class PresenceTracker:
    """Maps userId -> live connection count.

    Users at count 0 are removed from the map, so absence means offline.
    Each operation holds the tracker's lock, which makes concurrent
    connect/disconnect for the same user atomic relative to each other.
    """

    def __init__(self) -> None:
        self._counts: Dict[int, int] = {}
        self._lock = threading.Lock()

    def connect(self, user_id: int) -> bool:
        """Count a new connection. Returns True if the user just came online."""
        with self._lock:
            previous = self._counts.get(user_id, 0)
            self._counts[user_id] = previous + 1
            return previous == 0

    def disconnect(self, user_id: int) -> bool:
        """Drop a connection. Returns True if the user is now fully offline."""
        with self._lock:
            remaining = self._counts.get(user_id, 0) - 1
            if remaining <= 0:
                self._counts.pop(user_id, None)
                return True
            self._counts[user_id] = remaining
            return False

    def is_online(self, user_id: int) -> bool:
        with self._lock:
            return self._counts.get(user_id, 0) > 0

    def connection_count(self, user_id: int) -> int:
        with self._lock:
            return self._counts.get(user_id, 0)
