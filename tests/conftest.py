"""Shared pytest fixtures."""

import pytest

from factories import END, GYM, START
from scripts.kpi_engine.entities import EventScope
from scripts.kpi_engine.vocabulary import load_vocabulary
from scripts.lib.circuit_breaker import CircuitBreaker


@pytest.fixture
def vocab():
    return load_vocabulary()


@pytest.fixture
def scope():
    return EventScope(tenant_id=GYM, start=START, end=END)


@pytest.fixture(autouse=True)
def _reset_breakers():
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()
