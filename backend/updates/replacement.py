"""
Container replacement with rollback.

Swaps a drifted container for a fresh one created from the same runtime
configuration and the refreshed image:

    RUNNING → RENAMED → CREATED → OLD_STOPPED → NEW_STARTED → DONE

1. Rename target → temp (frees the name, keeps the old container intact)
2. Build the creation parameters from the old runtime config
3. Create the new container under the target name
4. Stop the old (temp) container
5. Start the new container
6. Remove the old container

A failure in steps 3-5 rolls back: the new container (if any) is stopped and
removed, temp is renamed back to target, and the old container is started
again if step 4 had stopped it. A failure in step 1 needs no rollback. A
failure in step 6 is cleanup debt only: the new container is live.

If the rollback itself fails, the old container is stranded under temp and
nothing holds the target name. That is reported as RollbackFailure and is
never retried automatically.
"""

import logging
from typing import Optional

from updates.engine import ContainerEngine
from updates.errors import CleanupFailure, EngineError, ReplacementStepError, RollbackFailure
from updates.event_emitter import UpdateEventEmitter
from updates.types import (
    DEFAULT_TEMP_SUFFIX,
    ContainerRecord,
    ReplacementPlan,
    ReplacementResult,
    ReplacementStage,
)

logger = logging.getLogger(__name__)


class ReplacementCoordinator:
    """
    Executes the stop/create/start/remove swap for one container.

    Assumes exclusive access to the container names it works on; the
    reconciliation pass guarantees only one replacement runs at a time.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        emitter: Optional[UpdateEventEmitter] = None,
        temp_suffix: str = DEFAULT_TEMP_SUFFIX
    ):
        """
        Args:
            engine: Container engine to act on
            emitter: Event emitter (defaults to one on the global bus)
            temp_suffix: Appended to the name of the container being replaced
        """
        self.engine = engine
        self.emitter = emitter or UpdateEventEmitter()
        self.temp_suffix = temp_suffix

    def plan_for(self, record: ContainerRecord) -> ReplacementPlan:
        return ReplacementPlan.from_record(record, self.temp_suffix)

    async def replace(self, record: ContainerRecord) -> ReplacementResult:
        """
        Replace record's container with one running the refreshed image.

        Args:
            record: Fresh inspect of the container (runtime config included)

        Returns:
            ReplacementResult; never raises for engine failures
        """
        plan = self.plan_for(record)
        target = plan.target_name
        stage = ReplacementStage.RUNNING
        new_container_id: Optional[str] = None

        logger.info(f"Updating container {target} ({record.short_id}) with image {plan.image}")
        await self.emitter.emit_started(target, record.id, plan.image)

        # Step 1: rename old container out of the way
        try:
            logger.info(f"Renaming {target} to {plan.temp_name}")
            await self.engine.rename(target, plan.temp_name)
            stage = ReplacementStage.RENAMED
        except EngineError as e:
            error = ReplacementStepError(target, "rename", e)
            logger.error(str(error))
            if e.status_code == 409:
                logger.error(f"{plan.temp_name} is left over from an earlier update; remove it to unblock {target}")
            await self.emitter.emit_failed(error, rollback_performed=False)
            return ReplacementResult.failure_result(target, stage, error)

        # Steps 2-5: create, stop old, start new
        step = "create"
        try:
            logger.info(f"Creating new container {target} from {plan.image}")
            new_container_id = await self.engine.create_container(plan)
            stage = ReplacementStage.CREATED

            step = "stop"
            logger.info(f"Stopping old container {plan.temp_name}")
            await self.engine.stop(plan.temp_name)
            stage = ReplacementStage.OLD_STOPPED

            step = "start"
            logger.info(f"Starting new container {target}")
            await self.engine.start(target)
            stage = ReplacementStage.NEW_STARTED
        except EngineError as e:
            error = ReplacementStepError(target, step, e)
            logger.error(f"Error during replacement: {error}")
            return await self._rollback(plan, stage, error, new_container_id)

        # Step 6: remove old container; failure here is not rolled back
        cleanup_error: Optional[CleanupFailure] = None
        try:
            logger.info(f"Removing old container {plan.temp_name}")
            await self.engine.remove(plan.temp_name)
        except EngineError as e:
            cleanup_error = CleanupFailure(target, plan.temp_name, e)
            logger.warning(str(cleanup_error))
            await self.emitter.emit_cleanup_failed(cleanup_error)

        logger.info(f"Update completed for container {target}")
        await self.emitter.emit_completed(target, new_container_id, plan.image, record.current_image_id)
        return ReplacementResult.success_result(target, new_container_id, cleanup_error)

    async def _rollback(
        self,
        plan: ReplacementPlan,
        stage: ReplacementStage,
        error: ReplacementStepError,
        new_container_id: Optional[str]
    ) -> ReplacementResult:
        """Restore the old container under its original name."""
        target = plan.target_name
        logger.warning(f"Rolling back: renaming {plan.temp_name} back to {target}")

        # A create that timed out may still have completed on the daemon; once
        # step 1 succeeded only the new container can hold the target name.
        await self._discard_new_container(plan, new_container_id or target)

        stranded_name = plan.temp_name
        try:
            await self.engine.rename(plan.temp_name, target)
            stranded_name = target
            if stage == ReplacementStage.OLD_STOPPED:
                logger.info(f"Restarting restored container {target}")
                await self.engine.start(target)
        except EngineError as e:
            return await self._rollback_failed(plan, error, RollbackFailure(target, stranded_name, e))

        logger.warning(f"Rollback successful: {target} restored")
        await self.emitter.emit_failed(error, rollback_performed=True)
        await self.emitter.emit_rollback_completed(target)
        return ReplacementResult.failure_result(
            target, ReplacementStage.ROLLBACK_COMPLETE, error, rollback_performed=True
        )

    async def _rollback_failed(
        self,
        plan: ReplacementPlan,
        error: ReplacementStepError,
        failure: RollbackFailure
    ) -> ReplacementResult:
        logger.critical(str(failure))
        await self.emitter.emit_failed(error, rollback_performed=False)
        await self.emitter.emit_rollback_failed(failure)
        return ReplacementResult.failure_result(
            plan.target_name, ReplacementStage.ROLLBACK_FAILED, failure, rollback_performed=False
        )

    async def _discard_new_container(self, plan: ReplacementPlan, container: str):
        """
        Stop and remove the half-finished replacement so the target name is
        free for the rename back. A failed start may still leave it running.
        container is the new id, or the target name when create never returned one.
        """
        try:
            await self.engine.stop(container)
        except EngineError as e:
            if e.status_code == 404:
                logger.debug(f"No new container {plan.target_name} to discard")
                return
            logger.debug(f"Could not stop new container {plan.target_name}: {e}")

        try:
            logger.info(f"Removing failed new container {plan.target_name}")
            await self.engine.remove(container)
        except EngineError as e:
            if e.status_code == 404:
                return
            logger.warning(f"Failed to remove new container {plan.target_name}: {e}")
