"""
Expiration & garbage collection.

Two sweeps on a shared timer:
1. Preview expiration: destroy instances whose TTL elapsed and clear the
   preview fields on their generation (source workspace is kept)
2. Stale workspaces: delete workspace directories idle past the retention
   window whose generation is missing or terminal

Each sweep tolerates per-item failure. A workspace whose generation is
not terminal is never deleted, however old it is.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import async_session
from app.models import TERMINAL_STATUSES, DeploymentStatus, GenerationRecord, OrgDeployment
from app.services.compute import ComputeClient, get_compute_client
from app.services.preview_pipeline import get_preview_pipeline
from app.services.workspace_store import WorkspaceStore, get_workspace_store

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Summary of one sweep."""
    examined: int = 0
    reclaimed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"examined={self.examined} reclaimed={len(self.reclaimed)} failed={len(self.failed)}"


class GarbageCollector:
    """Reclaims expired preview instances and stale workspaces."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: WorkspaceStore | None = None,
        compute: ComputeClient | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        is_busy: Callable[[str], bool] | None = None,
    ):
        self._settings = settings or get_settings()
        self._store = store or get_workspace_store()
        self._compute = compute or get_compute_client()
        self._session_factory = session_factory or async_session
        # Reports generations with a pipeline in flight in this process
        self._is_busy = is_busy or (lambda _generation_id: False)
        self._running = False
        self._sweep_task: asyncio.Task | None = None

    async def start(self):
        """Start the periodic sweep loop."""
        if self._running:
            return
        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Garbage collector started (every {self._settings.sweep_interval_seconds}s)")

    async def stop(self):
        """Stop the periodic sweep loop."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Garbage collector stopped")

    async def _sweep_loop(self):
        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(self._settings.sweep_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sweep loop error: {e}")
                await asyncio.sleep(self._settings.sweep_interval_seconds)

    async def run_once(self) -> tuple[SweepResult, SweepResult]:
        previews = await self.sweep_expired_previews()
        workspaces = await self.sweep_stale_workspaces()
        return previews, workspaces

    async def sweep_expired_previews(self, now: datetime | None = None) -> SweepResult:
        """
        Destroy every preview whose expiration is in the past.

        For each: destroy the instance, then in one commit clear the preview
        triple and stop any linked deployment still in PREVIEW.
        """
        now = now or datetime.utcnow()
        result = SweepResult()

        async with self._session_factory() as db:
            rows = await db.execute(
                select(GenerationRecord.id, GenerationRecord.preview_instance_id, GenerationRecord.app_id)
                .where(GenerationRecord.preview_instance_id.is_not(None))
                .where(GenerationRecord.preview_expires_at.is_not(None))
                .where(GenerationRecord.preview_expires_at < now)
            )
            expired = rows.all()

        if expired:
            logger.info(f"Found {len(expired)} expired preview(s)")

        for generation_id, instance_name, app_id in expired:
            result.examined += 1
            try:
                await self._compute.destroy(instance_name)
                await self._clear_preview(generation_id, app_id)
                result.reclaimed.append(generation_id)
                logger.info(f"Destroyed preview {instance_name} for generation {generation_id}")
            except Exception as e:
                result.failed.append(generation_id)
                logger.error(f"Failed to clean up preview {instance_name}: {e}")

        if result.examined:
            logger.info(f"Preview expiration sweep: {result}")
        return result

    async def _clear_preview(self, generation_id: str, app_id: str | None) -> None:
        async with self._session_factory() as db:
            record = await db.get(GenerationRecord, generation_id)
            if record is not None:
                record.clear_preview()
            if app_id:
                await db.execute(
                    update(OrgDeployment)
                    .where(OrgDeployment.app_id == app_id)
                    .where(OrgDeployment.status == DeploymentStatus.PREVIEW.value)
                    .values(status=DeploymentStatus.STOPPED.value, instance_id=None, url=None)
                )
            await db.commit()

    async def sweep_stale_workspaces(self, now: datetime | None = None) -> SweepResult:
        """
        Delete workspaces idle past the retention window.

        A directory is deleted only when its generation record is missing
        or terminal, and no pipeline for it is running in this process.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(hours=self._settings.workspace_retention_hours)
        result = SweepResult()

        stale = [entry for entry in self._store.iter_entries() if entry.modified_at < cutoff]
        if not stale:
            return result

        async with self._session_factory() as db:
            rows = await db.execute(
                select(GenerationRecord.id, GenerationRecord.status)
                .where(GenerationRecord.id.in_([entry.generation_id for entry in stale]))
            )
            statuses = dict(rows.all())

        for entry in stale:
            result.examined += 1
            status = statuses.get(entry.generation_id)
            if status is not None and status not in TERMINAL_STATUSES:
                logger.debug(f"Keeping workspace {entry.generation_id}: generation is {status}")
                continue
            if self._is_busy(entry.generation_id):
                logger.debug(f"Keeping workspace {entry.generation_id}: pipeline running")
                continue
            try:
                if self._store.delete(entry.generation_id):
                    result.reclaimed.append(entry.generation_id)
            except OSError as e:
                result.failed.append(entry.generation_id)
                logger.error(f"Failed to delete workspace {entry.path}: {e}")

        logger.info(f"Stale workspace sweep: {result}")
        return result


# Global singleton
_garbage_collector: GarbageCollector | None = None


def get_garbage_collector() -> GarbageCollector:
    """Get or create the global garbage collector."""
    global _garbage_collector
    if _garbage_collector is None:
        _garbage_collector = GarbageCollector(is_busy=get_preview_pipeline().is_running)
    return _garbage_collector
