# app/core/revocation.py
from __future__ import annotations

import threading
import time
from typing import Callable, Dict


class RevokedTokenStore:
    """Access tokens revoked before their natural expiry.

    Built once at startup and handed to the access guard and the session
    issuer. Entries expire lazily: a lookup past an entry's deadline drops it,
    and ``purge_expired`` sweeps the rest from the maintenance loop.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, float] = {}

    def revoke(self, token: str, expires_at: float) -> None:
        if expires_at <= self._clock():
            return
        with self._lock:
            current = self._entries.get(token, 0.0)
            self._entries[token] = max(current, expires_at)

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            deadline = self._entries.get(token)
            if deadline is None:
                return False
            if deadline <= self._clock():
                del self._entries[token]
                return False
            return True

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [tok for tok, deadline in self._entries.items() if deadline <= now]
            for tok in stale:
                del self._entries[tok]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
