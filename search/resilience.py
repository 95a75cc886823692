"""
Resilience primitives for provider calls.

  - with_timeout_and_retry: per-attempt timeout, exponential backoff,
    immediate propagation of non-retryable errors
  - CircuitBreaker: closed -> open -> half_open -> closed state machine
  - CircuitBreakerRegistry: one breaker per provider, shared process-wide

Breaker state changes are guarded by a lock so a single registry can back
concurrent requests.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from models.enums import BreakerState

from .config import ProviderPolicy
from .errors import CircuitOpenError, NonRetryableProviderError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ------------------------------------------------------------------
# Error classification
# ------------------------------------------------------------------

def is_retryable_error(error: BaseException) -> bool:
    """Only timeout-shaped, network and server-side failures are retried."""
    if isinstance(error, NonRetryableProviderError):
        return False
    if isinstance(error, (TransientProviderError, asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


def is_transient_error(error: BaseException) -> bool:
    """Whether a failure should count against a provider's breaker."""
    if isinstance(error, (TypeError, AttributeError, NameError, NonRetryableProviderError)):
        return False
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if 400 <= status < 500 and status != 429:
            return False
    return True


# ------------------------------------------------------------------
# Timeout + retry
# ------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """Per-call timeout and retry budget."""

    timeout_ms: int = 10000
    max_retries: int = 2
    backoff_ms: int = 500

    @classmethod
    def from_provider_policy(cls, policy: ProviderPolicy) -> RetryPolicy:
        return cls(
            timeout_ms=policy.timeout_ms,
            max_retries=policy.max_retries,
            backoff_ms=policy.backoff_ms,
        )

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (0-based)."""
        return (self.backoff_ms * (2 ** attempt)) / 1000.0


async def with_timeout_and_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str = "operation",
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation` with a timeout per attempt and retry transient failures.

    The operation is called afresh on every attempt. A timed-out attempt is
    cancelled. After max_retries retries the last error is re-raised as is.
    """
    timeout_s = policy.timeout_ms / 1000.0
    attempts = policy.max_retries + 1

    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_s)
        except Exception as e:
            if not is_retryable(e):
                logger.warning(f"{label}: non-retryable failure: {e!r}")
                raise
            if attempt == attempts - 1:
                logger.warning(f"{label}: giving up after {attempts} attempts: {e!r}")
                raise
            delay = policy.backoff_seconds(attempt)
            logger.info(
                f"{label}: attempt {attempt + 1}/{attempts} failed ({e!r}), "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)

    # Should never reach here, but satisfy type checker
    raise RuntimeError(f"{label}: retry loop exited without result")


# ------------------------------------------------------------------
# Circuit breaker
# ------------------------------------------------------------------

@dataclass
class CircuitBreakerStats:
    """Snapshot of one breaker."""

    name: str
    state: BreakerState
    failure_count: int
    opened_at: Optional[float]

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "opened_at": self.opened_at,
        }


class CircuitBreaker:
    """
    Per-provider failure isolation.

    closed    -> open       after `failure_threshold` consecutive failures
    open      -> half_open  once `cooldown_s` has elapsed (checked on call)
    half_open -> closed     when the single trial call succeeds
    half_open -> open       when the trial fails; cool-down restarts

    Calls while open fail immediately with CircuitOpenError.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        cooldown_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._lock = threading.Lock()

        self._state = BreakerState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @classmethod
    def from_policy(
        cls,
        name: str,
        policy: ProviderPolicy,
        clock: Callable[[], float] = time.monotonic,
    ) -> CircuitBreaker:
        return cls(
            name,
            failure_threshold=policy.failure_threshold,
            cooldown_s=policy.cooldown_s,
            clock=clock,
        )

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def stats(self) -> CircuitBreakerStats:
        with self._lock:
            self._maybe_half_open()
            return CircuitBreakerStats(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                opened_at=self._opened_at,
            )

    def acquire(self) -> None:
        """Claim permission to call, or raise CircuitOpenError."""
        with self._lock:
            self._maybe_half_open()
            if self._state == BreakerState.OPEN:
                remaining = self.cooldown_s - (self._clock() - (self._opened_at or 0.0))
                raise CircuitOpenError(
                    f"Circuit for {self.name} is open ({remaining:.1f}s until trial)",
                    provider=self.name,
                )
            if self._state == BreakerState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(
                        f"Circuit for {self.name} is half-open with a trial in flight",
                        provider=self.name,
                    )
                self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._state == BreakerState.HALF_OPEN:
                logger.info(f"[circuit:{self.name}] trial succeeded, closing")
            self._state = BreakerState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == BreakerState.HALF_OPEN:
                logger.warning(f"[circuit:{self.name}] trial failed, reopening")
                self._open()
            elif (
                self._state == BreakerState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                logger.warning(
                    f"[circuit:{self.name}] opening after {self._failure_count} "
                    f"consecutive failures"
                )
                self._open()

    def release(self) -> None:
        """Give back a half-open trial slot without recording an outcome."""
        with self._lock:
            self._trial_in_flight = False

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` under the breaker."""
        self.acquire()
        try:
            result = await operation()
        except Exception as e:
            if is_transient_error(e):
                self.record_failure()
            else:
                self.release()
            raise
        except BaseException:
            # cancellation says nothing about provider health
            self.release()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = BreakerState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False

    # Callers must hold the lock.

    def _open(self) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False

    def _maybe_half_open(self) -> None:
        if self._state != BreakerState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.cooldown_s:
            logger.info(f"[circuit:{self.name}] cool-down elapsed, half-open")
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = False


class CircuitBreakerRegistry:
    """Holds one breaker per provider name."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str, policy: Optional[ProviderPolicy] = None) -> CircuitBreaker:
        """Get the breaker for `name`, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker.from_policy(
                    name, policy or ProviderPolicy(), clock=self._clock
                )
                self._breakers[name] = breaker
            return breaker

    def snapshot(self) -> Dict[str, CircuitBreakerStats]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.stats() for b in breakers}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
