"""
Circuit breaker for the KPI data store.
After repeated failed reads the breaker opens and further reads fail fast
with CircuitOpenError, which the engine reports as "scope unavailable".
Breakers are shared per service and are safe to use from worker threads.

Usage:
    from scripts.lib.circuit_breaker import circuit_breaker_call

    rows = circuit_breaker_call("supabase", fetch_raw_entries, gym_id, start, end)
"""
import threading
import time
from typing import Any, Callable, Dict, List

from scripts.lib.errors import CircuitOpenError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)


class CircuitBreaker:
    """
    CLOSED    - reads go through; consecutive failures are counted.
    OPEN      - reads are refused until reset_timeout seconds have passed.
    HALF_OPEN - one trial read; success closes the breaker, failure re-opens it.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    _instances: Dict[str, "CircuitBreaker"] = {}
    _registry_lock = threading.Lock()

    def __init__(self, service: str, failure_threshold: int = 5, reset_timeout: float = 60):
        self.service = service
        self.failure_threshold = max(1, failure_threshold)
        self.reset_timeout = reset_timeout
        self.state = self.CLOSED
        self.failure_count = 0
        self.opened_at = 0.0
        self._lock = threading.Lock()

    @classmethod
    def get(cls, service: str, **kwargs) -> "CircuitBreaker":
        """Shared breaker for a service; settings apply when it is first created."""
        with cls._registry_lock:
            breaker = cls._instances.get(service)
            if breaker is None:
                breaker = cls._instances[service] = cls(service, **kwargs)
            return breaker

    @classmethod
    def reset_all(cls):
        with cls._registry_lock:
            cls._instances.clear()

    @classmethod
    def all_status(cls) -> List[dict]:
        with cls._registry_lock:
            breakers = list(cls._instances.values())
        return [b.status() for b in breakers]

    def can_execute(self) -> bool:
        with self._lock:
            if self.state != self.OPEN:
                return True
            if time.monotonic() - self.opened_at < self.reset_timeout:
                return False
            self.state = self.HALF_OPEN
        logger.info("Circuit half-open for '%s', allowing a trial read", self.service)
        return True

    def record_success(self):
        with self._lock:
            recovered = self.state == self.HALF_OPEN
            self.state = self.CLOSED
            self.failure_count = 0
        if recovered:
            logger.info("Circuit closed for '%s', store recovered", self.service)

    def record_failure(self):
        with self._lock:
            self.failure_count += 1
            trial_failed = self.state == self.HALF_OPEN
            opened = trial_failed or self.failure_count >= self.failure_threshold
            if opened:
                self.state = self.OPEN
                self.opened_at = time.monotonic()
        if opened:
            logger.warning(
                "Circuit open for '%s' after %d failure(s)%s; next trial in %ss",
                self.service, self.failure_count,
                " (trial read failed)" if trial_failed else "",
                self.reset_timeout,
            )

    @property
    def time_until_reset(self) -> float:
        """Seconds until a trial read is allowed (0 unless open)."""
        if self.state != self.OPEN:
            return 0.0
        return max(0.0, self.reset_timeout - (time.monotonic() - self.opened_at))

    def status(self) -> dict:
        return {
            "service": self.service,
            "state": self.state,
            "failures": self.failure_count,
            "threshold": self.failure_threshold,
            "time_until_reset": round(self.time_until_reset, 1),
        }


def circuit_breaker_call(
    service: str,
    func: Callable[..., Any],
    *args,
    failure_threshold: int = 5,
    reset_timeout: float = 60,
    **kwargs,
) -> Any:
    """
    Call func(*args, **kwargs) through the service's breaker.

    Raises:
        CircuitOpenError: If the breaker is open.
        Exception: Whatever func raised, after it is counted as a failure.
    """
    breaker = CircuitBreaker.get(
        service, failure_threshold=failure_threshold, reset_timeout=reset_timeout,
    )
    if not breaker.can_execute():
        raise CircuitOpenError(service, breaker.failure_count, breaker.time_until_reset)

    name = getattr(func, "__name__", repr(func))
    started = time.monotonic()
    try:
        result = func(*args, **kwargs)
    except Exception as e:
        breaker.record_failure()
        logger.error(
            "%s.%s failed after %.2fs: %s [circuit: %s]",
            service, name, time.monotonic() - started, e, breaker.state,
        )
        raise

    breaker.record_success()
    logger.debug("%s.%s ok in %.2fs", service, name, time.monotonic() - started)
    return result
