"""
Drift detection.

Decides whether the content published under a container's image reference
differs from the content the container was created from:

1. Inspect the container for its image reference and image id
2. Pull the reference (refreshes the local image cache as a side effect)
3. Inspect the local image for the reference
4. Compare ids

Policy under uncertainty:
- No local image for the reference → no update (nothing to compare against)
- Engine error while inspecting container or image → drift (fail-safe)

The pull is best effort. Not-found and auth-required answers are soft
misses, and any other pull failure is logged and swallowed; the comparison
then runs against whatever the local cache holds.
"""

import asyncio
import logging
from typing import Callable, Optional, Dict

from updates.engine import ContainerEngine
from updates.errors import EngineError, EngineQueryError, SoftRegistryMiss
from updates.event_emitter import UpdateEventEmitter
from updates.types import DriftReason, DriftResult, PullOutcome, PullProgress
from utils.image_id import same_image, short_image_id
from utils.registry_credentials import get_registry_credentials

logger = logging.getLogger(__name__)

CredentialSource = Callable[[str], Optional[Dict[str, str]]]


class DriftDetector:
    """Answers needs_update(container_name) against a ContainerEngine."""

    def __init__(
        self,
        engine: ContainerEngine,
        emitter: Optional[UpdateEventEmitter] = None,
        credential_source: CredentialSource = get_registry_credentials
    ):
        """
        Args:
            engine: Container engine to query
            emitter: Event emitter (defaults to one on the global bus)
            credential_source: image reference -> auth_config or None
        """
        self.engine = engine
        self.emitter = emitter or UpdateEventEmitter()
        self.credential_source = credential_source

    async def needs_update(self, container_name: str) -> DriftResult:
        """
        Check one container for image drift.

        Never raises for engine failures: they resolve to a drift verdict
        with reason CHECK_ERROR.
        """
        try:
            record = await self.engine.inspect(container_name)
        except EngineError as e:
            return await self._check_failed(container_name, "inspecting container", e)

        image_ref = record.image_reference
        logger.debug(
            f"Container {container_name} is using image {short_image_id(record.current_image_id)} ({image_ref})"
        )

        await self._refresh_image(container_name, image_ref)

        try:
            local_image = await self.engine.inspect_local_image(image_ref)
        except EngineError as e:
            return await self._check_failed(container_name, f"inspecting image {image_ref}", e)

        if local_image is None:
            logger.info(f"Local image not found for {image_ref}; cannot confirm drift for {container_name}")
            return DriftResult.no_update(
                container_name,
                DriftReason.NO_LOCAL_COPY,
                image_reference=image_ref,
                current_image_id=record.current_image_id,
            )

        if not same_image(local_image.content_id, record.current_image_id):
            result = DriftResult.drift(
                container_name,
                DriftReason.ID_MISMATCH,
                image_reference=image_ref,
                current_image_id=record.current_image_id,
                latest_image_id=local_image.content_id,
            )
            logger.info(
                f"Drift detected for {container_name}: container image "
                f"{short_image_id(record.current_image_id)} differs from {image_ref} "
                f"{short_image_id(local_image.content_id)}"
            )
            await self.emitter.emit_drift_detected(result)
            return result

        logger.debug(f"No update required for container: {container_name}")
        return DriftResult.no_update(
            container_name,
            DriftReason.UP_TO_DATE,
            image_reference=image_ref,
            current_image_id=record.current_image_id,
            latest_image_id=local_image.content_id,
        )

    async def _refresh_image(self, container_name: str, image_ref: str) -> Optional[PullOutcome]:
        """Pull image_ref; failures never abort detection."""
        credentials = self.credential_source(image_ref)
        progress: asyncio.Queue = asyncio.Queue()
        watcher = asyncio.create_task(self._watch_progress(image_ref, progress))

        try:
            outcome = await self.engine.pull_image(image_ref, credentials, progress)
        except Exception as e:
            logger.warning(f"Pull of {image_ref} failed for {container_name}: {e}")
            return None
        finally:
            # Engines that never publish still need the watcher to finish
            progress.put_nowait(None)
            await watcher

        if outcome.is_soft_miss:
            miss = SoftRegistryMiss(container_name, image_ref, outcome.value)
            logger.info(f"{miss}; falling back to local comparison")
            await self.emitter.emit_registry_miss(miss)
        elif outcome is PullOutcome.ERROR:
            logger.warning(f"Pull of {image_ref} failed for {container_name}; falling back to local comparison")

        return outcome

    @staticmethod
    async def _watch_progress(image_ref: str, progress: asyncio.Queue):
        """Consume pull progress until the first None sentinel."""
        layers = set()
        while True:
            event: Optional[PullProgress] = await progress.get()
            if event is None:
                break
            layers.add(event.layer_id)
            logger.debug(f"Syncing {image_ref}: layer {event.layer_id[:12]} {event.status} ({event.percent}%)")
        if layers:
            logger.info(f"Synced {image_ref} ({len(layers)} layers)")

    async def _check_failed(self, container_name: str, action: str, error: EngineError) -> DriftResult:
        """Fail-safe: an engine error while checking counts as drift."""
        query_error = EngineQueryError(container_name, f"Error {action} for {container_name}: {error}", error)
        logger.error(str(query_error))
        await self.emitter.emit_check_failed(query_error)
        return DriftResult.drift(
            container_name,
            DriftReason.CHECK_ERROR,
            error_message=str(error),
        )
