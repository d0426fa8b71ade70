"""
Error taxonomy for the update pipeline.

Raw engine failures (EngineError) never cross a component boundary: the
detector, coordinator and reconciliation pass convert them into one of the
ReconcilerError subclasses below before reporting.
"""

from typing import Optional


class EngineError(Exception):
    """A container engine call failed (API error, daemon unreachable, timeout)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReconcilerError(Exception):
    """Base class for classified reconciliation failures."""

    def __init__(self, container_name: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.container_name = container_name
        self.cause = cause


class SoftRegistryMiss(ReconcilerError):
    """Registry returned not-found or auth-required; local comparison still runs."""

    def __init__(self, container_name: str, image: str, outcome: str):
        super().__init__(container_name, f"Registry miss for {image}: {outcome}")
        self.image = image
        self.outcome = outcome


class EngineQueryError(ReconcilerError):
    """Listing or inspecting containers/images failed."""


class ReplacementStepError(ReconcilerError):
    """A replacement step (rename/create/stop/start) failed."""

    def __init__(self, container_name: str, step: str, cause: Optional[BaseException] = None):
        super().__init__(container_name, f"Replacement of {container_name} failed at {step}: {cause}", cause)
        self.step = step


class RollbackFailure(ReconcilerError):
    """
    Restoring the old container failed. Usually the old container is left
    under its temp name and nothing holds the original name; if only the
    restart failed it is back under the original name but stopped.
    Needs an operator.
    """

    def __init__(self, container_name: str, stranded_name: str, cause: Optional[BaseException] = None):
        super().__init__(
            container_name,
            f"CRITICAL: rollback of {container_name} failed ({cause}). "
            f"Manual intervention required - old container left as {stranded_name}",
            cause
        )
        self.stranded_name = stranded_name


class CleanupFailure(ReconcilerError):
    """Removing the old container after a successful swap failed."""

    def __init__(self, container_name: str, temp_name: str, cause: Optional[BaseException] = None):
        super().__init__(
            container_name,
            f"Failed to remove old container {temp_name}: {cause}. "
            f"Remove {temp_name} by hand; while it exists every later update of {container_name} fails at rename",
            cause
        )
        self.temp_name = temp_name
