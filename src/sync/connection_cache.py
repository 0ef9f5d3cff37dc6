import time
from typing import Callable, Dict, Optional, Tuple


class ConnectionStatusCache:
    """
    Short-lived "is this user connected" answers, keyed by (user, provider).

    Entries expire after ``ttl_s`` and are dropped explicitly whenever a
    credential is connected, disconnected or invalidated.
    """

    def __init__(self, ttl_s: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[bool, float]] = {}

    def get(self, user_id: str, provider: str) -> Optional[bool]:
        entry = self._entries.get((user_id, provider))
        if entry is None:
            return None
        connected, stored_at = entry
        if self._clock() - stored_at >= self.ttl_s:
            del self._entries[(user_id, provider)]
            return None
        return connected

    def set(self, user_id: str, provider: str, connected: bool) -> None:
        self._entries[(user_id, provider)] = (connected, self._clock())

    def invalidate(self, user_id: str, provider: Optional[str] = None) -> None:
        if provider is not None:
            self._entries.pop((user_id, provider), None)
            return
        for key in [k for k in self._entries if k[0] == user_id]:
            del self._entries[key]
