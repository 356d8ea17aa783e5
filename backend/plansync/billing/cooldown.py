"""Per-account sync cooldown: a soft throttle on reconciliation attempts."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Dict, Hashable, Protocol


class SyncCooldownCache(Protocol):
    """Protocol describing the cooldown operations used by the reconciliation engine.

    Implementations hold no correctness-critical data: clearing entries only
    causes extra (idempotent) reconciliations.
    """

    def should_sync(self, account_id: Hashable) -> bool:
        ...

    def mark_synced(self, account_id: Hashable) -> None:
        ...

    def clear(self, account_id: Hashable) -> None:
        ...

    def clear_all(self) -> None:
        ...


class InMemorySyncCooldownCache:
    """Process-local cooldown cache keyed by account ID.

    Each process keeps its own entries. Reads and writes are single dict
    operations, so concurrent callers never corrupt the map; two callers
    racing past ``should_sync`` both reconcile, which is safe. Entries older
    than the window are pruned at most once per window, so the map only holds
    accounts marked within roughly the last two windows.
    """

    def __init__(
        self,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_synced: Dict[Hashable, float] = {}
        self._last_pruned = clock()

    def should_sync(self, account_id: Hashable) -> bool:
        last = self._last_synced.get(account_id)
        if last is None:
            return True
        return self._clock() - last > self.window_seconds

    def mark_synced(self, account_id: Hashable) -> None:
        now = self._clock()
        self._last_synced[account_id] = now
        if now - self._last_pruned > self.window_seconds:
            self._prune(now)

    def _prune(self, now: float) -> None:
        expired = [k for k, t in self._last_synced.items() if now - t > self.window_seconds]
        for key in expired:
            del self._last_synced[key]
        self._last_pruned = now

    def clear(self, account_id: Hashable) -> None:
        self._last_synced.pop(account_id, None)

    def clear_all(self) -> None:
        self._last_synced.clear()

    def __len__(self) -> int:
        return len(self._last_synced)
