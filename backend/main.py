#!/usr/bin/env python3
"""
Image Updater - keeps running containers on the latest published image

Every cron tick the reconciliation pass lists running containers, pulls
each container's image reference and replaces the first container whose
image content changed. Replacement renames the old container aside, starts
a new one under the original name with the same configuration and rolls
back if anything fails.
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Optional

import docker
from docker.errors import DockerException

from config.settings import AppConfig, setup_logging
from docker_monitor.periodic_jobs import PeriodicJobsManager
from event_bus import Event, EventBus, EventType, get_event_bus
from updates.drift_detector import DriftDetector
from updates.engine import DockerEngine
from updates.event_emitter import UpdateEventEmitter
from updates.reconciler import ReconciliationPass
from updates.replacement import ReplacementCoordinator

logger = logging.getLogger(__name__)


@dataclass
class UpdaterService:
    """Wired components of a running updater"""
    event_bus: EventBus
    engine: DockerEngine
    reconciler: ReconciliationPass
    scheduler: PeriodicJobsManager


def build_service(client: docker.DockerClient, config=AppConfig, event_bus: Optional[EventBus] = None) -> UpdaterService:
    """Wire engine, detector, coordinator, pass and scheduler around one client"""
    bus = event_bus or get_event_bus()
    emitter = UpdateEventEmitter(bus)

    engine = DockerEngine(
        client,
        call_timeout=config.ENGINE_TIMEOUT,
        pull_timeout=config.PULL_TIMEOUT,
        stop_timeout=config.STOP_TIMEOUT,
    )
    detector = DriftDetector(engine, emitter)
    coordinator = ReplacementCoordinator(engine, emitter, temp_suffix=config.TEMP_SUFFIX)
    reconciler = ReconciliationPass(
        engine,
        detector,
        coordinator,
        emitter,
        ignore_containers=config.IGNORE_CONTAINERS,
        temp_suffix=config.TEMP_SUFFIX,
    )
    scheduler = PeriodicJobsManager(
        reconciler,
        cron_expression=config.CRON,
        run_on_startup=config.RUN_ON_STARTUP,
    )
    return UpdaterService(event_bus=bus, engine=engine, reconciler=reconciler, scheduler=scheduler)


async def _emit_system_event(bus: EventBus, event_type: EventType, message: str):
    await bus.emit(Event(
        event_type=event_type,
        scope_type='system',
        scope_id='image-updater',
        scope_name='Image Updater',
        data={'message': message},
    ))


async def run(service: UpdaterService):
    """Run the scheduler until SIGINT/SIGTERM"""
    if await service.engine.ping():
        logger.info("Connected to Docker engine")
    else:
        # Keep scheduling: each pass re-lists and reports engine errors itself
        logger.error("Docker engine did not answer ping; passes will fail until it is reachable")

    await _emit_system_event(
        service.event_bus,
        EventType.SYSTEM_STARTUP,
        f"Image updater started (cron '{service.scheduler.cron_expression}')",
    )

    loop = asyncio.get_running_loop()
    scheduler_task = asyncio.create_task(service.scheduler.run())

    def _request_shutdown(signame: str):
        logger.info(f"Received {signame}, shutting down...")
        scheduler_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except NotImplementedError:
            pass  # add_signal_handler is unavailable on Windows event loops

    try:
        await scheduler_task
    except asyncio.CancelledError:
        pass
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass
        await _emit_system_event(
            service.event_bus,
            EventType.SYSTEM_SHUTDOWN,
            f"Image updater stopped after {service.scheduler.passes_run} passes",
        )


def main() -> int:
    setup_logging()

    # Validate configuration early to fail fast on misconfiguration
    try:
        AppConfig.validate()
    except ValueError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 2

    logger.info("Starting image updater...")

    try:
        client = docker.from_env(timeout=int(AppConfig.ENGINE_TIMEOUT))
    except DockerException as e:
        logger.critical(f"Unable to create Docker client: {e}")
        return 1

    try:
        asyncio.run(run(build_service(client)))
    finally:
        client.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
