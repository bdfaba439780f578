"""
Unit tests for garbage_collector.py - preview expiration and workspace cleanup.

Critical invariant: a workspace whose generation is still in progress is
never deleted, however old the directory is.
"""
import os
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add backend to path for imports
backend_path = Path(__file__).parent.parent.parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from app.models import DeploymentStatus, GenerationRecord, OrgDeployment
from app.services.compute import FlyComputeClient
from app.services.garbage_collector import GarbageCollector
from app.services.workspace_store import WorkspaceStore

from tdd.shared.factories import (
    GenerationRecordFactory,
    MarketplaceAppFactory,
    OrgDeploymentFactory,
)


@pytest.fixture
def store(test_settings) -> WorkspaceStore:
    return WorkspaceStore(test_settings)


@pytest.fixture
def busy() -> set[str]:
    return set()


@pytest.fixture
def collector(test_settings, store, compute, session_factory, busy):
    return GarbageCollector(
        settings=test_settings,
        store=store,
        compute=compute,
        session_factory=session_factory,
        is_busy=lambda generation_id: generation_id in busy,
    )


def make_workspace(store: WorkspaceStore, generation_id: str, age_hours: float) -> Path:
    path = store.path_for(generation_id)
    (path / "node_modules").mkdir(parents=True)
    (path / "package.json").write_text("{}")
    stamp = time.time() - age_hours * 3600
    os.utime(path, (stamp, stamp))
    return path


async def save(session_factory, *objects):
    async with session_factory() as db:
        db.add_all(objects)
        await db.commit()


async def load(session_factory, model, key):
    async with session_factory() as db:
        return await db.get(model, key)


class TestStaleWorkspaceSweep:
    """Tests for GarbageCollector.sweep_stale_workspaces."""

    async def test_in_progress_generation_never_deleted(self, collector, store, session_factory):
        """An old workspace for a GENERATING record survives every sweep."""
        record = GenerationRecordFactory.build(generating=True)
        await save(session_factory, record)
        path = make_workspace(store, record.id, age_hours=24 * 30)

        result = await collector.sweep_stale_workspaces()

        assert path.exists()
        assert result.reclaimed == []

    async def test_terminal_generation_deleted(self, collector, store, session_factory):
        complete = GenerationRecordFactory.build()
        failed = GenerationRecordFactory.build(failed=True)
        await save(session_factory, complete, failed)
        complete_path = make_workspace(store, complete.id, age_hours=48)
        failed_path = make_workspace(store, failed.id, age_hours=48)

        result = await collector.sweep_stale_workspaces()

        assert not complete_path.exists()
        assert not failed_path.exists()
        assert sorted(result.reclaimed) == sorted([complete.id, failed.id])

    async def test_orphaned_workspace_deleted(self, collector, store):
        path = make_workspace(store, "no-such-generation", age_hours=48)

        result = await collector.sweep_stale_workspaces()

        assert not path.exists()
        assert result.reclaimed == ["no-such-generation"]

    async def test_recent_workspace_kept(self, collector, store, session_factory):
        record = GenerationRecordFactory.build()
        await save(session_factory, record)
        path = make_workspace(store, record.id, age_hours=1)

        result = await collector.sweep_stale_workspaces()

        assert path.exists()
        assert result.examined == 0

    async def test_workspace_with_running_pipeline_kept(self, collector, store, session_factory, busy):
        record = GenerationRecordFactory.build()
        await save(session_factory, record)
        path = make_workspace(store, record.id, age_hours=48)
        busy.add(record.id)

        await collector.sweep_stale_workspaces()

        assert path.exists()

    async def test_retention_window_from_settings(self, collector, store, test_settings):
        test_settings.workspace_retention_hours = 72
        path = make_workspace(store, "orphan", age_hours=48)

        await collector.sweep_stale_workspaces()

        assert path.exists()


class TestPreviewExpirationSweep:
    """Tests for GarbageCollector.sweep_expired_previews."""

    async def test_expired_preview_destroyed_and_cleared(self, collector, compute, session_factory):
        listing = MarketplaceAppFactory.build(draft=True)
        record = GenerationRecordFactory.build(expired=True, app_id=listing.id, source_dir="/data/workspaces/x")
        deployment = OrgDeploymentFactory.build(app_id=listing.id, instance_id=record.preview_instance_id)
        await save(session_factory, listing, record, deployment)

        result = await collector.sweep_expired_previews()

        assert result.reclaimed == [record.id]
        assert compute.destroyed == [record.preview_instance_id]

        saved = await load(session_factory, GenerationRecord, record.id)
        assert saved.preview_instance_id is None
        assert saved.preview_url is None
        assert saved.preview_expires_at is None
        assert saved.source_dir == "/data/workspaces/x"

        stopped = await load(session_factory, OrgDeployment, deployment.id)
        assert stopped.status == DeploymentStatus.STOPPED.value
        assert stopped.instance_id is None
        assert stopped.url is None

    async def test_running_deployment_untouched(self, collector, session_factory):
        listing = MarketplaceAppFactory.build()
        record = GenerationRecordFactory.build(expired=True, app_id=listing.id)
        running = OrgDeploymentFactory.build(running=True, app_id=listing.id)
        await save(session_factory, listing, record, running)

        await collector.sweep_expired_previews()

        saved = await load(session_factory, OrgDeployment, running.id)
        assert saved.status == DeploymentStatus.RUNNING.value
        assert saved.instance_id == running.instance_id

    async def test_unexpired_and_store_previews_kept(self, collector, compute, session_factory):
        fresh = GenerationRecordFactory.build(with_preview=True)
        store_preview = GenerationRecordFactory.build(with_preview=True, preview_expires_at=None)
        await save(session_factory, fresh, store_preview)

        result = await collector.sweep_expired_previews()

        assert result.examined == 0
        assert compute.destroyed == []

    async def test_destroy_failure_is_per_item(self, collector, compute, session_factory):
        """One failed destroy does not stop the others, and keeps its fields."""
        broken = GenerationRecordFactory.build(expired=True)
        healthy = GenerationRecordFactory.build(expired=True)
        await save(session_factory, broken, healthy)
        compute.fail_destroy_for.add(broken.preview_instance_id)

        result = await collector.sweep_expired_previews()

        assert result.failed == [broken.id]
        assert result.reclaimed == [healthy.id]
        kept = await load(session_factory, GenerationRecord, broken.id)
        assert kept.preview_instance_id == broken.preview_instance_id
        cleared = await load(session_factory, GenerationRecord, healthy.id)
        assert cleared.preview_instance_id is None

    async def test_instance_already_gone_still_cleared(self, test_settings, store, session_factory, step_runner):
        """An instance removed out of band must not pin the preview fields."""
        record = GenerationRecordFactory.build(expired=True)
        await save(session_factory, record)
        step_runner.fail_on("apps destroy", stderr=f'Error: Could not find App "{record.preview_instance_id}"')
        collector = GarbageCollector(
            settings=test_settings,
            store=store,
            compute=FlyComputeClient(test_settings, step_runner),
            session_factory=session_factory,
        )

        result = await collector.sweep_expired_previews()

        assert result.reclaimed == [record.id]
        assert result.failed == []
        saved = await load(session_factory, GenerationRecord, record.id)
        assert saved.preview_instance_id is None
        assert saved.preview_expires_at is None

        again = await collector.sweep_expired_previews()
        assert again.examined == 0

    async def test_now_can_be_supplied(self, collector, compute, session_factory):
        record = GenerationRecordFactory.build(with_preview=True)
        await save(session_factory, record)

        result = await collector.sweep_expired_previews(now=datetime.utcnow() + timedelta(days=8))

        assert result.reclaimed == [record.id]


class TestSweepLoop:

    async def test_start_and_stop(self, collector):
        collector.run_once = AsyncMock(return_value=(None, None))

        await collector.start()
        assert collector._sweep_task is not None

        await collector.stop()

        assert collector._sweep_task is None
        assert collector._running is False
