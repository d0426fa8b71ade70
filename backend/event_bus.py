"""
Event Bus - Centralized event reporting

This module provides a central event bus that:
1. Receives events from the detector, coordinator and reconciliation pass
2. Logs every event at the severity its type implies
3. Keeps a bounded history of recent events
4. Manages event subscribers for extensibility (notifications, tests)

Events flow: Service → EventBus → [Log, History, Subscribers]
"""

import logging
from collections import deque
from typing import Dict, Any, Optional, List, Callable, Awaitable
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)

# Number of events kept in EventBus.history
DEFAULT_HISTORY_SIZE = 500


class EventType(str, Enum):
    """Standard event types in the system"""
    # Drift detection events
    DRIFT_DETECTED = "drift_detected"
    UPDATE_CHECK_FAILED = "update_check_failed"
    REGISTRY_MISS = "registry_miss"

    # Replacement events
    UPDATE_STARTED = "update_started"
    UPDATE_COMPLETED = "update_completed"
    UPDATE_FAILED = "update_failed"
    ROLLBACK_COMPLETED = "rollback_completed"
    ROLLBACK_FAILED = "rollback_failed"
    CLEANUP_FAILED = "cleanup_failed"

    # Reconciliation pass events
    PASS_COMPLETED = "pass_completed"
    PASS_FAILED = "pass_failed"

    # System events
    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"


class EventSeverity(str, Enum):
    """Event severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


SEVERITY_BY_TYPE: Dict[EventType, EventSeverity] = {
    EventType.DRIFT_DETECTED: EventSeverity.INFO,
    EventType.UPDATE_CHECK_FAILED: EventSeverity.WARNING,
    EventType.REGISTRY_MISS: EventSeverity.DEBUG,
    EventType.UPDATE_STARTED: EventSeverity.INFO,
    EventType.UPDATE_COMPLETED: EventSeverity.INFO,
    EventType.UPDATE_FAILED: EventSeverity.ERROR,
    EventType.ROLLBACK_COMPLETED: EventSeverity.WARNING,
    EventType.ROLLBACK_FAILED: EventSeverity.CRITICAL,
    EventType.CLEANUP_FAILED: EventSeverity.WARNING,
    EventType.PASS_COMPLETED: EventSeverity.DEBUG,
    EventType.PASS_FAILED: EventSeverity.ERROR,
    EventType.SYSTEM_STARTUP: EventSeverity.INFO,
    EventType.SYSTEM_SHUTDOWN: EventSeverity.INFO,
}

_LOG_LEVELS = {
    EventSeverity.DEBUG: logging.DEBUG,
    EventSeverity.INFO: logging.INFO,
    EventSeverity.WARNING: logging.WARNING,
    EventSeverity.ERROR: logging.ERROR,
    EventSeverity.CRITICAL: logging.CRITICAL,
}


class Event:
    """
    Standard event object passed through the event bus
    """
    def __init__(
        self,
        event_type: EventType,
        scope_type: str,  # 'container', 'system'
        scope_id: str,
        scope_name: str,
        data: Optional[Dict[str, Any]] = None,
        severity: Optional[EventSeverity] = None,
        timestamp: Optional[datetime] = None
    ):
        self.event_type = event_type
        self.scope_type = scope_type
        self.scope_id = scope_id
        self.scope_name = scope_name
        self.data = data or {}
        self.severity = severity or SEVERITY_BY_TYPE.get(event_type, EventSeverity.INFO)
        self.timestamp = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for logging/processing"""
        return {
            'event_type': self.event_type.value if isinstance(self.event_type, EventType) else str(self.event_type),
            'severity': self.severity.value,
            'scope_type': self.scope_type,
            'scope_id': self.scope_id,
            'scope_name': self.scope_name,
            'data': self.data,
            'timestamp': self.timestamp.isoformat()
        }


class EventBus:
    """
    Centralized event bus for reporting reconciliation outcomes

    Usage:
        bus = EventBus()
        await bus.emit(Event(
            event_type=EventType.UPDATE_COMPLETED,
            scope_type='container',
            scope_id=container_id,
            scope_name=container_name,
            data={'image': '...', 'new_container_id': '...'}
        ))
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self.subscribers: Dict[str, List[Callable[[Event], Awaitable[None]]]] = {}
        self.history: deque = deque(maxlen=history_size)
        logger.info("EventBus initialized")

    def subscribe(self, event_type: EventType, handler: Callable[[Event], Awaitable[None]]):
        """
        Subscribe to specific event type

        Args:
            event_type: Type of event to subscribe to
            handler: Async function that handles the event
        """
        event_type_str = event_type.value if isinstance(event_type, EventType) else str(event_type)
        if event_type_str not in self.subscribers:
            self.subscribers[event_type_str] = []
        self.subscribers[event_type_str].append(handler)
        logger.debug(f"Subscribed handler to event type: {event_type_str}")

    def unsubscribe(self, event_type: EventType, handler: Callable[[Event], Awaitable[None]]):
        """
        Unsubscribe from specific event type

        Args:
            event_type: Type of event to unsubscribe from
            handler: Handler function to remove
        """
        event_type_str = event_type.value if isinstance(event_type, EventType) else str(event_type)
        if event_type_str in self.subscribers:
            try:
                self.subscribers[event_type_str].remove(handler)
                if not self.subscribers[event_type_str]:
                    del self.subscribers[event_type_str]
                logger.debug(f"Unsubscribed handler from event type: {event_type_str}")
            except ValueError:
                logger.warning(f"Handler not found in subscribers for event type: {event_type_str}")

    async def emit(self, event: Event):
        """
        Emit an event - logs it, records it and notifies subscribers

        Args:
            event: Event object to emit
        """
        try:
            self._log_event(event)
            self.history.append(event)
            await self._notify_subscribers(event)
        except Exception as e:
            logger.error(f"EventBus: Error processing event {event.event_type}: {e}", exc_info=True)

    def _log_event(self, event: Event):
        level = _LOG_LEVELS.get(event.severity, logging.INFO)
        message = event.data.get('message') or event.event_type.value
        logger.log(level, f"[{event.event_type.value}] {event.scope_name}: {message}")

    async def _notify_subscribers(self, event: Event):
        """Notify all subscribers for this event type"""
        event_type_str = event.event_type.value if isinstance(event.event_type, EventType) else str(event.event_type)
        handlers = list(self.subscribers.get(event_type_str, []))

        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"EventBus: Subscriber error for {event_type_str}: {e}", exc_info=True)

    def recent(self, event_type: Optional[EventType] = None) -> List[Event]:
        """Recent events, oldest first, optionally filtered by type."""
        if event_type is None:
            return list(self.history)
        return [e for e in self.history if e.event_type == event_type]


# Process-wide bus, created on first use
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get or create the global event bus instance"""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
