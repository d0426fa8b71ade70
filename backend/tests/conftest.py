"""
Shared pytest fixtures for image updater tests.

Fixtures provided:
- fake_engine: In-memory ContainerEngine (see tests/fakes.py)
- event_bus: Fresh EventBus per test (events land in event_bus.history)
- emitter: UpdateEventEmitter bound to event_bus
- detector / coordinator / reconciler: Components wired to fake_engine
- mock_docker_client: Mock Docker SDK client for DockerEngine tests
"""

import os
import sys

import pytest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from event_bus import EventBus
from fakes import FakeEngine
from updates.drift_detector import DriftDetector
from updates.event_emitter import UpdateEventEmitter
from updates.reconciler import ReconciliationPass
from updates.replacement import ReplacementCoordinator


@pytest.fixture
def fake_engine():
    """Empty in-memory engine."""
    return FakeEngine()


@pytest.fixture
def event_bus():
    """Isolated event bus so tests never share history."""
    return EventBus(history_size=100)


@pytest.fixture
def emitter(event_bus):
    return UpdateEventEmitter(event_bus)


@pytest.fixture
def detector(fake_engine, emitter):
    """DriftDetector that pulls anonymously."""
    return DriftDetector(fake_engine, emitter, credential_source=lambda image: None)


@pytest.fixture
def coordinator(fake_engine, emitter):
    return ReplacementCoordinator(fake_engine, emitter)


@pytest.fixture
def reconciler(fake_engine, detector, coordinator, emitter):
    return ReconciliationPass(fake_engine, detector, coordinator, emitter)


@pytest.fixture
def mock_docker_client():
    """
    Mock Docker SDK client for testing without real Docker daemon.

    Returns a MagicMock with common Docker SDK methods stubbed.
    """
    client = MagicMock()
    client.ping = MagicMock(return_value=True)
    client.containers.list = MagicMock(return_value=[])
    client.api.inspect_container = MagicMock()
    client.api.create_container = MagicMock(return_value={'Id': 'new123def456' + '0' * 52})
    client.api.start = MagicMock()
    client.api.stop = MagicMock()
    client.api.rename = MagicMock()
    client.api.remove_container = MagicMock()
    client.images.get = MagicMock()
    return client
