"""
Per-provider circuit breaker.

Two states only: closed, or open until the cool-down deadline passes. The
first call after the cool-down is a real call, there is no half-open probe.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from quotedesk.config.settings import BreakerSettings

logger = logging.getLogger(__name__)


@dataclass
class ProviderHealthState:
    provider_id: str
    failures: int = 0
    open: bool = False
    cooldown_until: Optional[float] = None


class ProviderHealthTracker:
    def __init__(
        self,
        config: BreakerSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or BreakerSettings()
        self._clock = clock
        self._states: Dict[str, ProviderHealthState] = {}
        self._lock = threading.Lock()

    def _state(self, provider_id: str) -> ProviderHealthState:
        state = self._states.get(provider_id)
        if state is None:
            state = ProviderHealthState(provider_id)
            self._states[provider_id] = state
        elif state.open and self._clock() >= (state.cooldown_until or 0.0):
            logger.info(
                "Circuit for %s closed after %.0fs cool-down",
                provider_id,
                self.config.cooldown_seconds,
            )
            state.failures = 0
            state.open = False
            state.cooldown_until = None
        return state

    def should_skip(self, provider_id: str) -> bool:
        with self._lock:
            return self._state(provider_id).open

    def record_failure(self, provider_id: str) -> None:
        with self._lock:
            state = self._state(provider_id)
            state.failures += 1
            if not state.open and state.failures >= self.config.failure_threshold:
                state.open = True
                state.cooldown_until = self._clock() + self.config.cooldown_seconds
                logger.warning(
                    "Circuit for %s OPEN after %d consecutive failures",
                    provider_id,
                    state.failures,
                )

    def record_success(self, provider_id: str) -> None:
        with self._lock:
            state = self._state(provider_id)
            if state.open:
                logger.info("Circuit for %s closed after success", provider_id)
            state.failures = 0
            state.open = False
            state.cooldown_until = None

    def failures(self, provider_id: str) -> int:
        with self._lock:
            return self._state(provider_id).failures

    def reset(self) -> None:
        with self._lock:
            self._states.clear()
