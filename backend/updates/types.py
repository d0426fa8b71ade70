"""
Shared types for drift detection and container replacement.

These dataclasses are the only shapes that cross component boundaries:
the engine returns ContainerRecord/ImageIdentity, the detector returns
DriftResult, and the coordinator consumes a ReplacementPlan and returns a
ReplacementResult.
"""

from dataclasses import dataclass, field
from typing import Optional, Any, Dict
from enum import Enum

# Suffix appended to a container's name while it is being replaced
DEFAULT_TEMP_SUFFIX = "-old-temp"


class DriftReason(Enum):
    """Why DriftDetector reached its verdict."""
    UP_TO_DATE = "up_to_date"
    NO_LOCAL_COPY = "no_local_copy"
    ID_MISMATCH = "id_mismatch"
    CHECK_ERROR = "check_error"


class PullOutcome(Enum):
    """Final outcome of an image pull."""
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"

    @property
    def is_soft_miss(self) -> bool:
        """Registry had nothing for us, but that is not a failure."""
        return self in (PullOutcome.NOT_FOUND, PullOutcome.AUTH_REQUIRED)


class ReplacementStage(Enum):
    """States of the replacement state machine."""
    RUNNING = "running"
    RENAMED = "renamed"
    CREATED = "created"
    OLD_STOPPED = "old_stopped"
    NEW_STARTED = "new_started"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    ROLLBACK_COMPLETE = "rollback_complete"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass
class ContainerRecord:
    """
    Live view of a container, fetched fresh from the engine on every pass.

    runtime_config is the engine's creation blob (Config, HostConfig,
    NetworkSettings) and is copied verbatim into the replacement.
    """
    id: str
    name: str
    image_reference: str
    current_image_id: str
    runtime_config: Dict[str, Any] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        return self.id[:12]


@dataclass(frozen=True)
class ImageIdentity:
    """A locally cached image: reference (name:tag) and content-addressed id."""
    reference: str
    content_id: str


@dataclass(frozen=True)
class DriftResult:
    """Verdict of DriftDetector.needs_update()."""
    needs_update: bool
    reason: DriftReason
    container_name: str
    image_reference: Optional[str] = None
    current_image_id: Optional[str] = None
    latest_image_id: Optional[str] = None
    error_message: Optional[str] = None

    def __bool__(self) -> bool:
        return self.needs_update

    @classmethod
    def drift(cls, container_name: str, reason: DriftReason, **kwargs) -> 'DriftResult':
        return cls(needs_update=True, reason=reason, container_name=container_name, **kwargs)

    @classmethod
    def no_update(cls, container_name: str, reason: DriftReason, **kwargs) -> 'DriftResult':
        return cls(needs_update=False, reason=reason, container_name=container_name, **kwargs)


@dataclass(frozen=True)
class ReplacementPlan:
    """
    Everything needed to swap one container, derived at the moment drift
    is confirmed. Never persisted.
    """
    target_name: str
    temp_name: str
    image: str
    runtime_config: Dict[str, Any]

    @classmethod
    def from_record(cls, record: ContainerRecord, temp_suffix: str = DEFAULT_TEMP_SUFFIX) -> 'ReplacementPlan':
        return cls(
            target_name=record.name,
            temp_name=f"{record.name}{temp_suffix}",
            image=record.image_reference,
            runtime_config=record.runtime_config,
        )


@dataclass
class ReplacementResult:
    """
    Outcome of ReplacementCoordinator.replace().

    success is True once the new container is running, even if removing the
    old copy failed afterwards (cleanup_failed is set in that case).
    """
    success: bool
    container_name: str
    stage: ReplacementStage
    new_container_id: Optional[str] = None
    error: Optional[Exception] = None
    rollback_performed: bool = False
    cleanup_failed: bool = False

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error else None

    @property
    def critical(self) -> bool:
        """Rollback failed: the container is stranded under its temp name."""
        return self.stage == ReplacementStage.ROLLBACK_FAILED

    @classmethod
    def success_result(
        cls,
        container_name: str,
        new_container_id: str,
        cleanup_error: Optional[Exception] = None
    ) -> 'ReplacementResult':
        """Create a successful result."""
        return cls(
            success=True,
            container_name=container_name,
            stage=ReplacementStage.DONE,
            new_container_id=new_container_id,
            error=cleanup_error,
            cleanup_failed=cleanup_error is not None,
        )

    @classmethod
    def failure_result(
        cls,
        container_name: str,
        stage: ReplacementStage,
        error: Exception,
        rollback_performed: bool = False
    ) -> 'ReplacementResult':
        """Create a failure result."""
        return cls(
            success=False,
            container_name=container_name,
            stage=stage,
            error=error,
            rollback_performed=rollback_performed,
        )


@dataclass
class PullProgress:
    """Progress information for image pull operations."""
    layer_id: str
    status: str
    current: int = 0
    total: int = 0

    @property
    def percent(self) -> int:
        """Calculate percentage complete."""
        if self.total == 0:
            return 0
        return int((self.current / self.total) * 100)
