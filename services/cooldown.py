"""
Per-source cooldown (circuit breaker) state.

A source that signals rate limiting is blocked for a fixed window; while
blocked, callers skip it without touching the network. State lives for the
process only and is owned by AppState so tests can build a fresh registry.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CircuitState:
    blocked_until: float = 0.0
    reason: str = ""
    trips: int = 0


class CooldownRegistry:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._states: Dict[str, CircuitState] = {}

    def is_blocked(self, source: str) -> bool:
        state = self._states.get(source)
        if state is None or state.blocked_until <= 0:
            return False
        if state.blocked_until <= self._clock():
            state.blocked_until = 0.0
            state.reason = ""
            logger.info(f"[COOLDOWN] {source} cooldown expired")
            return False
        return True

    def remaining(self, source: str) -> float:
        state = self._states.get(source)
        if state is None:
            return 0.0
        return max(0.0, state.blocked_until - self._clock())

    def trip(self, source: str, seconds: float, reason: str = "") -> None:
        state = self._states.setdefault(source, CircuitState())
        state.blocked_until = self._clock() + seconds
        state.reason = reason
        state.trips += 1
        logger.warning(f"[COOLDOWN] {source} blocked for {seconds:.0f}s: {reason or 'rate limited'}")

    def reset(self, source: Optional[str] = None) -> None:
        if source is None:
            self._states.clear()
        else:
            self._states.pop(source, None)

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        return {
            name: {
                "blocked": self.is_blocked(name),
                "remaining_seconds": round(self.remaining(name), 1),
                "reason": state.reason,
                "trips": state.trips,
            }
            for name, state in list(self._states.items())
        }
