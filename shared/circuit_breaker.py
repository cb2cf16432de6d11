"""
Circuit breaker guarding calls to the payment provider and the email relay.
"""

import time
from enum import Enum
from typing import Dict, Any, Callable, Awaitable

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(Exception):
    """Raised instead of calling a dependency that keeps failing."""

    def __init__(self, name: str):
        super().__init__(f"Circuit breaker '{name}' is open")
        self.name = name


class CircuitBreaker:
    """Opens after consecutive failures and allows a probe once the timeout elapses."""

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 name: str = "default"):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"storefront.circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        if (
            self._state == CircuitBreakerState.OPEN
            and time.monotonic() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitBreakerState.HALF_OPEN
            self.logger.info("Circuit breaker half-open, allowing probe")
        return self._state

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` unless the breaker is open."""
        if self.state == CircuitBreakerState.OPEN:
            raise CircuitBreakerOpenException(self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise

        if self._state != CircuitBreakerState.CLOSED or self._failure_count:
            self.logger.info("Circuit breaker closed", previous_failures=self._failure_count)
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        return result

    def _record_failure(self):
        self._failure_count += 1
        if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self._opened_at = time.monotonic()
            self.logger.warning(
                "Circuit breaker opened",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def reset(self):
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(name: str,
                        failure_threshold: int = 5,
                        recovery_timeout: float = 60.0) -> CircuitBreaker:
    """Get or create the process-wide breaker for ``name``."""
    if name not in _breakers:
        _breakers[name] = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name=name,
        )
    return _breakers[name]


def get_all_states() -> Dict[str, Dict[str, Any]]:
    return {name: breaker.get_state() for name, breaker in _breakers.items()}
