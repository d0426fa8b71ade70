"""
Event emitter for drift checks and container replacements.

Handles emission of update-related events via the EventBus system.
Centralizes event creation to reduce boilerplate in the detector,
coordinator and reconciliation pass.
"""

import logging
from typing import Optional

from event_bus import Event, EventBus, EventType, get_event_bus
from updates.errors import (
    CleanupFailure,
    EngineQueryError,
    ReplacementStepError,
    RollbackFailure,
    SoftRegistryMiss,
)
from updates.types import DriftResult

logger = logging.getLogger(__name__)


class UpdateEventEmitter:
    """
    Emits update-related events via the EventBus.

    All container events carry scope_type='container' and the container
    name as scope_name. Emission never raises: a broken bus must not break
    a replacement.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        """
        Args:
            event_bus: Bus to emit on (defaults to the global bus)
        """
        self._event_bus = event_bus

    @property
    def event_bus(self) -> EventBus:
        if self._event_bus is None:
            self._event_bus = get_event_bus()
        return self._event_bus

    async def _emit(self, event_type: EventType, container_name: str, data: dict, scope_id: Optional[str] = None):
        try:
            await self.event_bus.emit(Event(
                event_type=event_type,
                scope_type='container',
                scope_id=scope_id or container_name,
                scope_name=container_name,
                data=data,
            ))
        except Exception as e:
            logger.error(f"Error emitting {event_type.value} event: {e}")

    async def emit_drift_detected(self, result: DriftResult):
        """Emit DRIFT_DETECTED event."""
        await self._emit(EventType.DRIFT_DETECTED, result.container_name, {
            'message': f"Image {result.image_reference} drifted ({result.reason.value})",
            'reason': result.reason.value,
            'image': result.image_reference,
            'current_image_id': result.current_image_id,
            'latest_image_id': result.latest_image_id,
        })

    async def emit_check_failed(self, error: EngineQueryError):
        """Emit UPDATE_CHECK_FAILED event (engine query failed)."""
        await self._emit(EventType.UPDATE_CHECK_FAILED, error.container_name, {
            'message': str(error),
            'error_kind': type(error).__name__,
        })

    async def emit_registry_miss(self, miss: SoftRegistryMiss):
        """Emit REGISTRY_MISS event (not found / auth required on pull)."""
        await self._emit(EventType.REGISTRY_MISS, miss.container_name, {
            'message': str(miss),
            'error_kind': type(miss).__name__,
            'image': miss.image,
            'outcome': miss.outcome,
        })

    async def emit_started(self, container_name: str, container_id: str, target_image: str):
        """Emit UPDATE_STARTED event."""
        await self._emit(EventType.UPDATE_STARTED, container_name, {
            'message': f"Replacing with {target_image}",
            'target_image': target_image,
        }, scope_id=container_id)

    async def emit_completed(
        self,
        container_name: str,
        new_container_id: str,
        image: str,
        previous_image_id: Optional[str] = None
    ):
        """Emit UPDATE_COMPLETED event."""
        await self._emit(EventType.UPDATE_COMPLETED, container_name, {
            'message': f"Replaced with {image}",
            'image': image,
            'previous_image_id': previous_image_id,
            'new_container_id': new_container_id,
        }, scope_id=new_container_id)

    async def emit_failed(self, error: ReplacementStepError, rollback_performed: bool):
        """Emit UPDATE_FAILED event naming the failed step."""
        await self._emit(EventType.UPDATE_FAILED, error.container_name, {
            'message': str(error),
            'error_kind': type(error).__name__,
            'step': error.step,
            'rollback_performed': rollback_performed,
        })

    async def emit_rollback_completed(self, container_name: str):
        """Emit ROLLBACK_COMPLETED event."""
        await self._emit(EventType.ROLLBACK_COMPLETED, container_name, {
            'message': f"Restored {container_name}",
        })

    async def emit_rollback_failed(self, error: RollbackFailure):
        """Emit ROLLBACK_FAILED event (critical, operator action required)."""
        await self._emit(EventType.ROLLBACK_FAILED, error.container_name, {
            'message': str(error),
            'error_kind': type(error).__name__,
            'stranded_name': error.stranded_name,
        })

    async def emit_cleanup_failed(self, error: CleanupFailure):
        """Emit CLEANUP_FAILED event (warning level)."""
        await self._emit(EventType.CLEANUP_FAILED, error.container_name, {
            'message': str(error),
            'error_kind': type(error).__name__,
            'temp_name': error.temp_name,
        })

    async def emit_pass_completed(self, checked: int, replaced: Optional[str]):
        """Emit PASS_COMPLETED event."""
        try:
            await self.event_bus.emit(Event(
                event_type=EventType.PASS_COMPLETED,
                scope_type='system',
                scope_id='reconciler',
                scope_name='reconciler',
                data={
                    'message': f"Checked {checked} container(s), replaced {replaced or 'none'}",
                    'checked': checked,
                    'replaced': replaced,
                },
            ))
        except Exception as e:
            logger.error(f"Error emitting pass completed event: {e}")

    async def emit_pass_failed(self, error: EngineQueryError):
        """Emit PASS_FAILED event (container listing failed)."""
        try:
            await self.event_bus.emit(Event(
                event_type=EventType.PASS_FAILED,
                scope_type='system',
                scope_id='reconciler',
                scope_name='reconciler',
                data={
                    'message': str(error),
                    'error_kind': type(error).__name__,
                },
            ))
        except Exception as e:
            logger.error(f"Error emitting pass failed event: {e}")
