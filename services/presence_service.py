"""
Presence registry: the "audience online" counter.

An ephemeral heartbeat registry, independent from the placement core.
Clients send a heartbeat every few seconds; entries that have not been
refreshed within the TTL are treated as offline and pruned lazily.
"""
from typing import Callable, Dict, Optional
import logging
import threading
import time

logger = logging.getLogger(__name__)


class PresenceRegistry:
    def __init__(self, ttl_seconds: float = 30.0, clock: Optional[Callable[[], float]] = None):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def heartbeat(self, identity: str) -> None:
        with self._lock:
            if identity not in self._last_seen:
                logger.debug(f"Presence: {identity} online")
            self._last_seen[identity] = self._clock()

    def leave(self, identity: str) -> None:
        with self._lock:
            if self._last_seen.pop(identity, None) is not None:
                logger.debug(f"Presence: {identity} left")

    def is_online(self, identity: str) -> bool:
        with self._lock:
            last_seen = self._last_seen.get(identity)
            return last_seen is not None and self._clock() - last_seen < self.ttl_seconds

    def online_count(self) -> int:
        with self._lock:
            self._prune()
            return len(self._last_seen)

    def _prune(self):
        cutoff = self._clock() - self.ttl_seconds
        expired = [identity for identity, seen in self._last_seen.items() if seen <= cutoff]
        for identity in expired:
            del self._last_seen[identity]
