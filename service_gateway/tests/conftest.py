"""
Shared fixtures for gateway unit tests.
"""

import pytest

from shared.metrics import MetricsCollector
from service_gateway.app.models import GatewayConfig
from service_gateway.app.store import InMemoryKeyValueStore
from service_gateway.tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def metrics():
    return MetricsCollector("gateway")


@pytest.fixture
def config():
    return GatewayConfig()
