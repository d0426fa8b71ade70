"""
Updates Module

Image drift detection and in-place container replacement.

Architecture:
- DriftDetector: Pull + compare image ids for one container
- ReplacementCoordinator: Rename/create/stop/start/remove swap with rollback
- ReconciliationPass: Per-tick orchestration (first drifted container only)
- ContainerEngine / DockerEngine: Engine capability and its docker SDK implementation
"""

from updates.types import (
    ContainerRecord,
    DriftReason,
    DriftResult,
    ImageIdentity,
    PullOutcome,
    ReplacementPlan,
    ReplacementResult,
    ReplacementStage,
)
from updates.engine import ContainerEngine, DockerEngine
from updates.drift_detector import DriftDetector
from updates.replacement import ReplacementCoordinator
from updates.reconciler import ReconciliationPass, PassSummary

__all__ = [
    'ContainerRecord',
    'DriftReason',
    'DriftResult',
    'ImageIdentity',
    'PullOutcome',
    'ReplacementPlan',
    'ReplacementResult',
    'ReplacementStage',
    'ContainerEngine',
    'DockerEngine',
    'DriftDetector',
    'ReplacementCoordinator',
    'ReconciliationPass',
    'PassSummary',
]
