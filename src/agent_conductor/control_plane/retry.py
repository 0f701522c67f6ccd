"""Retry backoff policy and per-provider circuit breaker."""

from __future__ import annotations

import random as random_module
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Final, TypeAlias

from agent_conductor.errors import ErrorKind

RandomFn: TypeAlias = Callable[[], float]
ClockFn: TypeAlias = Callable[[], float]

DEFAULT_FAILURE_THRESHOLD: Final[int] = 3
DEFAULT_RESET_TIMEOUT_SECONDS: Final[float] = 60.0


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy with a separate rate-limit schedule."""

    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    jitter_seconds: float = 0.5
    rate_limit_initial_delay_seconds: float = 10.0
    rate_limit_max_delay_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")
        if self.jitter_seconds < 0:
            raise ValueError("jitter_seconds must be >= 0")
        if self.rate_limit_initial_delay_seconds < 0:
            raise ValueError("rate_limit_initial_delay_seconds must be >= 0")
        if self.rate_limit_initial_delay_seconds > self.rate_limit_max_delay_seconds:
            raise ValueError(
                "rate_limit_initial_delay_seconds must be <= rate_limit_max_delay_seconds"
            )

    @classmethod
    def immediate(cls) -> BackoffConfig:
        """No waiting at all; used by tests and dry runs."""

        return cls(
            initial_delay_seconds=0.0,
            max_delay_seconds=0.0,
            jitter_seconds=0.0,
            rate_limit_initial_delay_seconds=0.0,
            rate_limit_max_delay_seconds=0.0,
        )


def compute_backoff_delay(
    *,
    retry_number: int,
    config: BackoffConfig,
    kind: ErrorKind | None = None,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Return the delay before retry N (1-based)."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")

    if kind is ErrorKind.RATE_LIMITED:
        return min(
            config.rate_limit_max_delay_seconds,
            config.rate_limit_initial_delay_seconds * (2 ** (retry_number - 1)),
        )

    base_delay = config.initial_delay_seconds * (config.multiplier ** (retry_number - 1))
    bounded_delay = min(base_delay, config.max_delay_seconds)
    if config.jitter_seconds == 0.0:
        return bounded_delay

    random_value = random_fn()
    if not (0.0 <= random_value <= 1.0):
        raise ValueError("random_fn must return values in [0.0, 1.0]")
    return bounded_delay + random_value * config.jitter_seconds


class BreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure breaker for one provider.

    Opens after ``failure_threshold`` consecutive failures. Once
    ``reset_timeout_seconds`` have passed it lets a single trial through; a
    success closes it again, a failure re-opens it.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: ClockFn = time.monotonic,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        if reset_timeout_seconds < 0:
            raise ValueError("reset_timeout_seconds must be >= 0")
        self._threshold = failure_threshold
        self._reset_timeout = reset_timeout_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        if self._opened_at is None:
            return BreakerState.CLOSED
        if self._clock() - self._opened_at >= self._reset_timeout:
            return BreakerState.HALF_OPEN
        return BreakerState.OPEN

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def allow_request(self) -> bool:
        state = self.state
        if state is BreakerState.CLOSED:
            return True
        if state is BreakerState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        if self._trial_in_flight or self._failures >= self._threshold:
            self._opened_at = self._clock()
        self._trial_in_flight = False


__all__ = [
    "BackoffConfig",
    "BreakerState",
    "CircuitBreaker",
    "compute_backoff_delay",
]
