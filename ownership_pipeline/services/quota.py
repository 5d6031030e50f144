"""
Per-provider daily call budget (rolling 24h window).
"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional


WINDOW_SECONDS = 24 * 60 * 60


class DailyQuota:
    def __init__(self, limit: Optional[int], clock: Callable[[], float] = time.time) -> None:
        # limit=None means the provider has no published daily cap.
        self.limit = limit
        self._clock = clock
        self._calls: Deque[float] = deque()

    def _prune(self) -> None:
        cutoff = self._clock() - WINDOW_SECONDS
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()

    def used(self) -> int:
        self._prune()
        return len(self._calls)

    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used())

    def can_request(self) -> bool:
        return self.limit is None or self.used() < self.limit

    def record(self) -> None:
        self._calls.append(self._clock())

    def status(self) -> Dict[str, Optional[int]]:
        return {"used": self.used(), "limit": self.limit, "remaining": self.remaining()}
