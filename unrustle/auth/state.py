from __future__ import annotations

import logging
import threading
import time
from heapq import heappop, heappush
from typing import Callable, Dict, List, Optional, Tuple

from unrustle.auth.config import STATE_TTL_SECONDS
from unrustle.auth.models import PendingAuth, Service
from unrustle.auth.util import random_token, short_nonce

logger = logging.getLogger(__name__)


class StateStore:
    """
    One-time OAuth `state` nonces for a single provider.

    Entries expire `ttl_seconds` after issuance. Expiry is tracked in one
    time-ordered heap and swept lazily on every call; `consume` also checks the
    entry's own deadline, so an expired entry is never handed out even if the
    sweep has not reached it yet.

    `consume` is check-and-delete under one lock: when several callbacks race on
    the same nonce exactly one of them gets `found=True`.
    """

    def __init__(
        self,
        service: Service,
        *,
        ttl_seconds: float = STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, PendingAuth] = {}
        self._expiry: List[Tuple[float, str]] = []

    def issue(self, verifier: Optional[str] = None) -> str:
        """Record a new pending login and return its nonce."""
        with self._lock:
            now = self._clock()
            self._sweep(now)
            nonce = random_token(32)
            while nonce in self._entries:
                nonce = random_token(32)
            entry = PendingAuth(
                nonce=nonce,
                service=self.service,
                created_at=now,
                expires_at=now + self._ttl,
                verifier=verifier,
            )
            self._entries[nonce] = entry
            heappush(self._expiry, (entry.expires_at, nonce))
        logger.debug("%s state issued: %s...", self.service.value, short_nonce(nonce))
        return nonce

    def consume(self, nonce: Optional[str]) -> Tuple[Optional[str], bool]:
        """
        Remove the pending login for `nonce`.

        Returns (verifier, found). `verifier` is None for providers without one.
        """
        if not nonce:
            return None, False
        with self._lock:
            now = self._clock()
            self._sweep(now)
            entry = self._entries.pop(nonce, None)
        if entry is None:
            return None, False
        if entry.expires_at <= now:
            return None, False
        return entry.verifier, True

    def __len__(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._entries)

    def _sweep(self, now: float) -> None:
        # Caller holds the lock.
        while self._expiry and self._expiry[0][0] <= now:
            expires_at, nonce = heappop(self._expiry)
            entry = self._entries.get(nonce)
            # Already consumed, or the slot was reissued with a later deadline.
            if entry is None or entry.expires_at != expires_at:
                continue
            del self._entries[nonce]
            logger.info("deleting expired %s state %s...", self.service.value, short_nonce(nonce))


_stores: Dict[Service, StateStore] = {}
_stores_lock = threading.Lock()


def get_state_store(service: Service) -> StateStore:
    """Process-wide store for `service` (one independent store per provider)."""
    with _stores_lock:
        store = _stores.get(service)
        if store is None:
            store = StateStore(service)
            _stores[service] = store
        return store


def set_state_store(store: StateStore) -> None:
    """Replace the store for `store.service` (for testing)."""
    with _stores_lock:
        _stores[store.service] = store
