"""
Tests for ReconciliationPass.

End-to-end over the in-memory engine: detection, replacement and the
one-replacement-per-pass policy.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from event_bus import EventType
from updates.errors import EngineError
from updates.reconciler import OPT_OUT_LABEL, ReconciliationPass
from updates.types import ContainerRecord, DriftReason, DriftResult, ReplacementStage


@pytest.mark.unit
class TestReconciliationScenarios:

    @pytest.mark.asyncio
    async def test_registry_update_replaces_container(self, fake_engine, reconciler):
        """web on app:latest sha:AAA, registry now serves sha:BBB."""
        fake_engine.add_container('web', 'app:latest', 'sha:AAA')
        fake_engine.local_images['app:latest'] = 'sha:AAA'
        fake_engine.registry['app:latest'] = 'sha:BBB'

        summary = await reconciler.run_once()

        assert summary.replaced == 'web'
        assert fake_engine.get('web').image_id == 'sha:BBB'
        assert fake_engine.get('web').running is True
        assert fake_engine.get('web-old-temp') is None

    @pytest.mark.asyncio
    async def test_create_failure_keeps_original(self, fake_engine, reconciler, event_bus):
        fake_engine.add_container('web', 'app:latest', 'sha:AAA')
        fake_engine.local_images['app:latest'] = 'sha:AAA'
        fake_engine.registry['app:latest'] = 'sha:BBB'
        fake_engine.fail_on['create'] = EngineError("create failed")

        summary = await reconciler.run_once()

        assert summary.replaced is None
        assert summary.replacement.stage == ReplacementStage.ROLLBACK_COMPLETE
        assert fake_engine.get('web').image_id == 'sha:AAA'
        assert fake_engine.get('web-old-temp') is None

        failed = event_bus.recent(EventType.UPDATE_FAILED)
        assert len(failed) == 1
        assert failed[0].data['error_kind'] == 'ReplacementStepError'

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, fake_engine, reconciler):
        fake_engine.add_container('web', 'app:latest', 'sha:AAA')
        fake_engine.add_container('db', 'postgres:16', 'sha:PG1')
        fake_engine.local_images.update({'app:latest': 'sha:AAA', 'postgres:16': 'sha:PG1'})
        fake_engine.registry.update({'app:latest': 'sha:BBB', 'postgres:16': 'sha:PG1'})

        await reconciler.run_once()
        fake_engine.reset_counters()

        summary = await reconciler.run_once()

        assert summary.replaced is None
        assert summary.drift is None
        assert fake_engine.mutations == 0

    @pytest.mark.asyncio
    async def test_only_first_drifted_container_replaced(self, fake_engine, reconciler):
        for name in ('alpha', 'beta', 'gamma'):
            fake_engine.add_container(name, f'{name}:latest', 'sha:OLD')
            fake_engine.local_images[f'{name}:latest'] = 'sha:OLD'
            fake_engine.registry[f'{name}:latest'] = 'sha:NEW'

        summary = await reconciler.run_once()

        assert summary.replaced == 'alpha'
        assert summary.checked == ['alpha']
        assert fake_engine.get('alpha').image_id == 'sha:NEW'
        assert fake_engine.get('beta').image_id == 'sha:OLD'
        assert fake_engine.get('gamma').image_id == 'sha:OLD'

        # Later passes pick up the rest, one at a time
        second = await reconciler.run_once()
        third = await reconciler.run_once()
        assert second.replaced == 'beta'
        assert third.replaced == 'gamma'

    @pytest.mark.asyncio
    async def test_up_to_date_containers_are_all_checked(self, fake_engine, reconciler, event_bus):
        fake_engine.add_container('web', 'app:latest', 'sha:AAA')
        fake_engine.add_container('cache', 'redis:7', 'sha:R7')
        fake_engine.registry.update({'app:latest': 'sha:AAA', 'redis:7': 'sha:R7'})

        summary = await reconciler.run_once()

        assert summary.checked == ['web', 'cache']
        assert summary.drift is None

        completed = event_bus.recent(EventType.PASS_COMPLETED)
        assert len(completed) == 1
        assert completed[0].data['checked'] == 2
        assert completed[0].data['replaced'] is None

    @pytest.mark.asyncio
    async def test_stopped_containers_are_ignored(self, fake_engine, reconciler):
        fake_engine.add_container('batch', 'job:latest', 'sha:AAA', running=False)
        fake_engine.registry['job:latest'] = 'sha:BBB'

        summary = await reconciler.run_once()

        assert summary.checked == []
        assert fake_engine.mutations == 0


@pytest.mark.unit
class TestReconciliationSkipRules:

    @pytest.mark.asyncio
    async def test_ignored_and_opted_out_containers_skipped(self, fake_engine, detector, coordinator, emitter):
        reconciler = ReconciliationPass(
            fake_engine, detector, coordinator, emitter, ignore_containers=['proxy']
        )
        fake_engine.add_container('proxy', 'traefik:3', 'sha:T1')
        fake_engine.add_container('pinned', 'app:1', 'sha:A1', labels={OPT_OUT_LABEL: 'false'})
        fake_engine.add_container('web-old-temp', 'app:latest', 'sha:A0')
        for ref in ('traefik:3', 'app:1', 'app:latest'):
            fake_engine.registry[ref] = 'sha:NEW'

        summary = await reconciler.run_once()

        assert summary.skipped == ['proxy', 'pinned', 'web-old-temp']
        assert summary.checked == []
        assert fake_engine.mutations == 0

    def test_opt_out_label_is_case_insensitive(self, reconciler):
        record = ContainerRecord(
            id='c1', name='web', image_reference='app:latest', current_image_id='sha:AAA',
            labels={OPT_OUT_LABEL: 'False'}
        )
        assert reconciler.should_skip(record) is True

    def test_opt_in_label_is_not_skipped(self, reconciler):
        record = ContainerRecord(
            id='c1', name='web', image_reference='app:latest', current_image_id='sha:AAA',
            labels={OPT_OUT_LABEL: 'true'}
        )
        assert reconciler.should_skip(record) is False


@pytest.mark.unit
class TestReconciliationFailures:

    @pytest.mark.asyncio
    async def test_list_failure_ends_pass(self, fake_engine, reconciler, event_bus):
        fake_engine.fail_on['list'] = EngineError("daemon unreachable")

        summary = await reconciler.run_once()

        assert summary.error is not None
        assert summary.checked == []
        failed = event_bus.recent(EventType.PASS_FAILED)
        assert len(failed) == 1
        assert failed[0].data['error_kind'] == 'EngineQueryError'
        assert event_bus.recent(EventType.PASS_COMPLETED) == []

    @pytest.mark.asyncio
    async def test_check_error_with_failing_reinspect_does_not_replace(self, fake_engine, reconciler, event_bus):
        """Fail-safe drift, but the container cannot be inspected for its config."""
        fake_engine.add_container('web', 'app:latest', 'sha:AAA')
        fake_engine.fail_on[('inspect', 'web')] = EngineError("inspect failed")

        summary = await reconciler.run_once()

        assert summary.drift.reason == DriftReason.CHECK_ERROR
        assert summary.replacement is None
        assert fake_engine.mutations == 0
        # One from the detector, one from the pre-replacement inspect
        assert len(event_bus.recent(EventType.UPDATE_CHECK_FAILED)) == 2

    @pytest.mark.asyncio
    async def test_replacement_uses_fresh_inspect(self, emitter):
        listed = ContainerRecord(id='c1', name='web', image_reference='app:latest', current_image_id='sha:AAA')
        fresh = ContainerRecord(
            id='c1', name='web', image_reference='app:latest', current_image_id='sha:AAA',
            runtime_config={'Config': {'Env': ['A=1']}}
        )
        engine = AsyncMock()
        engine.list_running.return_value = [listed]
        engine.inspect.return_value = fresh
        detector = MagicMock()
        detector.needs_update = AsyncMock(
            return_value=DriftResult.drift('web', DriftReason.ID_MISMATCH)
        )
        coordinator = MagicMock()
        coordinator.replace = AsyncMock(return_value=MagicMock(success=True, container_name='web'))

        reconciler = ReconciliationPass(engine, detector, coordinator, emitter)
        await reconciler.run_once()

        coordinator.replace.assert_awaited_once_with(fresh)

    @pytest.mark.asyncio
    async def test_overlapping_passes_are_serialized(self, emitter):
        active = 0
        max_active = 0

        async def slow_list():
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1
            return []

        engine = MagicMock()
        engine.list_running = slow_list
        reconciler = ReconciliationPass(engine, MagicMock(), MagicMock(), emitter)

        await asyncio.gather(reconciler.run_once(), reconciler.run_once(), reconciler.run_once())

        assert max_active == 1
