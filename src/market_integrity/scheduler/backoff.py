"""Retry policy — exponential backoff and a retry budget per market."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _RetryState:
    attempts: int = 0
    next_due: float = 0.0  # time.monotonic()
    parked: bool = False


class RetryTracker:
    """Tracks consecutive RETRY decisions per market.

    After the n-th consecutive retry a market is not due again for
    ``base_s * 2**(n-1)`` seconds (capped at *max_s*). Once *max_attempts*
    is reached the market is parked until reset.
    """

    def __init__(
        self,
        base_s: float = 10.0,
        max_s: float = 300.0,
        max_attempts: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_s = base_s
        self.max_s = max_s
        self.max_attempts = max_attempts
        self._clock = clock
        self._states: dict[str, _RetryState] = {}

    def is_due(self, market_id: str) -> bool:
        state = self._states.get(market_id)
        if state is None:
            return True
        if state.parked:
            return False
        return self._clock() >= state.next_due

    def is_parked(self, market_id: str) -> bool:
        state = self._states.get(market_id)
        return state is not None and state.parked

    def attempts(self, market_id: str) -> int:
        state = self._states.get(market_id)
        return state.attempts if state else 0

    def record_retry(self, market_id: str) -> bool:
        """Count a RETRY; returns True exactly when this one parks the market."""
        state = self._states.setdefault(market_id, _RetryState())
        state.attempts += 1
        delay = min(self.base_s * 2 ** (state.attempts - 1), self.max_s)
        state.next_due = self._clock() + delay
        if not state.parked and state.attempts >= self.max_attempts:
            state.parked = True
            return True
        return False

    def reset(self, market_id: str) -> None:
        """Forget a market's retry history (after a RESOLVED, or by an operator)."""
        self._states.pop(market_id, None)

    def retain(self, market_ids: set[str]) -> None:
        """Drop state for markets that have left the registry."""
        for market_id in list(self._states):
            if market_id not in market_ids:
                del self._states[market_id]
