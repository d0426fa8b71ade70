"""
Reconciliation pass.

One pass per scheduler tick: list running containers, check each for drift
in listing order, replace the FIRST drifted container and stop. Remaining
containers are picked up by later ticks. At most one replacement is ever in
flight: overlapping run_once() calls wait on a lock.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from updates.drift_detector import DriftDetector
from updates.engine import ContainerEngine
from updates.errors import EngineError, EngineQueryError
from updates.event_emitter import UpdateEventEmitter
from updates.replacement import ReplacementCoordinator
from updates.types import DEFAULT_TEMP_SUFFIX, ContainerRecord, DriftResult, ReplacementResult

logger = logging.getLogger(__name__)

# Label that opts a container out of automatic updates
OPT_OUT_LABEL = "image-updater.enable"


@dataclass
class PassSummary:
    """What one run_once() did."""
    checked: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    drift: Optional[DriftResult] = None
    replacement: Optional[ReplacementResult] = None
    error: Optional[EngineQueryError] = None

    @property
    def replaced(self) -> Optional[str]:
        if self.replacement and self.replacement.success:
            return self.replacement.container_name
        return None


class ReconciliationPass:
    """Top-level reconciliation invoked once per scheduler tick."""

    def __init__(
        self,
        engine: ContainerEngine,
        detector: DriftDetector,
        coordinator: ReplacementCoordinator,
        emitter: Optional[UpdateEventEmitter] = None,
        ignore_containers: Iterable[str] = (),
        temp_suffix: str = DEFAULT_TEMP_SUFFIX
    ):
        self.engine = engine
        self.detector = detector
        self.coordinator = coordinator
        self.emitter = emitter or UpdateEventEmitter()
        self.ignore_containers = set(ignore_containers)
        self.temp_suffix = temp_suffix
        self._lock = asyncio.Lock()

    def should_skip(self, record: ContainerRecord) -> bool:
        """Ignored names, opted-out containers and leftover rollback copies."""
        if record.name in self.ignore_containers:
            return True
        if self.temp_suffix and record.name.endswith(self.temp_suffix):
            return True
        return str(record.labels.get(OPT_OUT_LABEL, '')).lower() == 'false'

    async def run_once(self) -> PassSummary:
        """
        Check running containers and replace the first one that drifted.

        Never raises for engine failures; they are reported as events.
        """
        async with self._lock:
            return await self._run()

    async def _run(self) -> PassSummary:
        summary = PassSummary()

        try:
            containers = await self.engine.list_running()
        except EngineError as e:
            summary.error = EngineQueryError('*', f"Error listing running containers: {e}", e)
            logger.error(str(summary.error))
            await self.emitter.emit_pass_failed(summary.error)
            return summary

        for listed in containers:
            if self.should_skip(listed):
                logger.debug(f"Skipping container {listed.name}")
                summary.skipped.append(listed.name)
                continue

            summary.checked.append(listed.name)
            result = await self.detector.needs_update(listed.name)
            if not result.needs_update:
                continue

            summary.drift = result
            summary.replacement = await self._replace(listed, result)
            break

        await self.emitter.emit_pass_completed(len(summary.checked), summary.replaced)
        return summary

    async def _replace(self, listed: ContainerRecord, result: DriftResult) -> Optional[ReplacementResult]:
        """Re-inspect for the current runtime config, then swap."""
        try:
            record = await self.engine.inspect(listed.name)
        except EngineError as e:
            error = EngineQueryError(listed.name, f"Error inspecting {listed.name} before replacement: {e}", e)
            logger.error(str(error))
            await self.emitter.emit_check_failed(error)
            return None

        logger.info(f"Replacing {record.name} ({result.reason.value})")
        return await self.coordinator.replace(record)
