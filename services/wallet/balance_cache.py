# services/wallet/balance_cache.py
from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, Dict, Optional, Tuple

CacheKey = Tuple[str, str, str]  # (chain, wallet address, contract)


class TokenBalanceCache:
    """
    Process-wide cache of exact on-chain token balances.

    key (chain, address, contract) -> (balance, fetched_at). Expiry is checked
    on lookup; there is no background eviction.
    """

    def __init__(self, ttl_sec: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = max(0.0, float(ttl_sec))
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(chain: str, address: str, contract: str) -> CacheKey:
        return ((chain or "").lower(), (address or "").lower(), (contract or "").lower())

    def get(self, chain: str, address: str, contract: str) -> Optional[int]:
        if self.ttl_sec <= 0:
            return None
        k = self._key(chain, address, contract)
        with self._lock:
            hit = self._entries.get(k)
            if hit is None:
                return None
            balance, fetched_at = hit
            if self._clock() - fetched_at <= self.ttl_sec:
                return balance
            self._entries.pop(k, None)
            return None

    def set(self, chain: str, address: str, contract: str, balance: int) -> None:
        if self.ttl_sec <= 0:
            return
        with self._lock:
            self._entries[self._key(chain, address, contract)] = (int(balance), self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CallThrottle:
    """Enforces a minimum delay between consecutive calls sharing this throttle."""

    def __init__(self, min_interval_sec: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval_sec = max(0.0, float(min_interval_sec))
        self._clock = clock
        self._last: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self._last is not None and self.min_interval_sec > 0:
                remaining = self.min_interval_sec - (self._clock() - self._last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last = self._clock()
