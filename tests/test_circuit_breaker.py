"""Tests for the circuit breaker."""

from unittest.mock import patch

import pytest

from scripts.lib.circuit_breaker import CircuitBreaker, circuit_breaker_call
from scripts.lib.errors import CircuitOpenError


def _fail():
    raise ConnectionError("down")


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                circuit_breaker_call("store", _fail, failure_threshold=2, reset_timeout=30)
        with pytest.raises(CircuitOpenError):
            circuit_breaker_call("store", lambda: "ok")

    def test_half_open_recovers(self):
        with pytest.raises(ConnectionError):
            circuit_breaker_call("store", _fail, failure_threshold=1, reset_timeout=30)
        breaker = CircuitBreaker.get("store")
        assert breaker.state == CircuitBreaker.OPEN

        with patch("scripts.lib.circuit_breaker.time.monotonic", return_value=breaker.opened_at + 31):
            assert circuit_breaker_call("store", lambda: "ok") == "ok"
        assert breaker.state == CircuitBreaker.CLOSED

    def test_passes_arguments(self):
        assert circuit_breaker_call("store", lambda a, b=0: a + b, 1, b=2) == 3

    def test_all_status(self):
        circuit_breaker_call("store", lambda: None)
        assert [s["service"] for s in CircuitBreaker.all_status()] == ["store"]
