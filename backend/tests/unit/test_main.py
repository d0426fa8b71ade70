"""
Tests for service wiring and the entrypoint lifecycle.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import main
from config.settings import AppConfig
from event_bus import EventBus, EventType


@pytest.fixture
def config():
    yield AppConfig.reload({'IGNORE_CONTAINERS': 'proxy', 'TEMP_SUFFIX': '-prev', 'STOP_TIMEOUT': '5'})
    AppConfig.reload()


@pytest.mark.unit
def test_build_service_wires_config(mock_docker_client, config):
    bus = EventBus()

    service = main.build_service(mock_docker_client, config, event_bus=bus)

    assert service.event_bus is bus
    assert service.engine.client is mock_docker_client
    assert service.engine.stop_timeout == 5
    assert service.reconciler.ignore_containers == {'proxy'}
    assert service.reconciler.temp_suffix == '-prev'
    assert service.reconciler.coordinator.temp_suffix == '-prev'
    assert service.reconciler.detector.engine is service.engine
    assert service.scheduler.reconciler is service.reconciler
    assert service.scheduler.cron_expression == '* * * * *'


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_emits_startup_and_shutdown(mock_docker_client, config):
    bus = EventBus()
    service = main.build_service(mock_docker_client, config, event_bus=bus)
    service.scheduler.run = AsyncMock(side_effect=asyncio.CancelledError())

    await main.run(service)

    assert [e.event_type for e in bus.recent()] == [EventType.SYSTEM_STARTUP, EventType.SYSTEM_SHUTDOWN]
    assert bus.recent()[0].scope_type == 'system'


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_continues_when_ping_fails(mock_docker_client, config, caplog):
    mock_docker_client.ping.return_value = False
    bus = EventBus()
    service = main.build_service(mock_docker_client, config, event_bus=bus)
    service.scheduler.run = AsyncMock(return_value=None)

    await main.run(service)

    service.scheduler.run.assert_awaited_once()
    assert 'did not answer ping' in caplog.text


@pytest.mark.unit
def test_main_rejects_invalid_config():
    with patch.object(main, 'setup_logging'), \
            patch.object(main.AppConfig, 'validate', side_effect=ValueError("Invalid cron expression")), \
            patch.object(main.docker, 'from_env') as from_env:
        assert main.main() == 2
        from_env.assert_not_called()


@pytest.mark.unit
def test_main_closes_client():
    client = MagicMock()
    with patch.object(main, 'setup_logging'), \
            patch.object(main.AppConfig, 'validate', return_value=True), \
            patch.object(main.docker, 'from_env', return_value=client), \
            patch.object(main, 'run', new=MagicMock(return_value=None)) as run, \
            patch.object(main.asyncio, 'run') as asyncio_run:
        assert main.main() == 0

    asyncio_run.assert_called_once()
    run.assert_called_once()
    client.close.assert_called_once()
