"""
Preview pipeline executor.

Turns a generation's source into a running preview instance:

    RESOLVE_SOURCE -> PATCH_MANIFEST -> INSTALL_DEPENDENCIES -> SCHEMA_SETUP
    -> SEED_DATA -> PROVISION_COMPUTE -> DEPLOY -> CAPTURE_VERIFICATION
    -> PERSIST_RESULT

Steps run strictly in sequence. RESOLVE_SOURCE, INSTALL_DEPENDENCIES,
PROVISION_COMPUTE and DEPLOY are fatal; everything else logs and moves
on. A fatal failure marks the generation FAILED.

Runs are started from HTTP handlers and execute as background tasks, so
every run opens its own database sessions instead of borrowing the
request's.
"""
import asyncio
import logging
import shutil
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import async_session
from app.models import GenerationRecord, GenerationStatus, MarketplaceApp, PreviewKind
from app.services.background import spawn
from app.services.compute import ComputeClient, SecretsUpdate, get_compute_client
from app.services.errors import (
    DependencyInstallFailed,
    OrchestratorError,
    SchemaStepFailed,
    SeedFailed,
    ScreenshotFailed,
    truncate,
)
from app.services.screenshot import capture_screenshot
from app.services.source_patches import (
    SCHEMA_RELATIVE_PATH,
    SEED_RELATIVE_PATH,
    has_seed_script,
    inject_binary_targets,
    patch_auth_for_preview,
    remove_seed_script,
)
from app.services.step_runner import StepCommand, StepRunner, step_runner
from app.services.workspace_store import WorkspaceStore, get_workspace_store

logger = logging.getLogger(__name__)

LOCAL_DATABASE_ENV = {"DATABASE_URL": "file:./dev.db"}
RECORD_ERROR_LIMIT = 1000
LOG_STDERR_LIMIT = 200

SCHEMA_COMMANDS = [
    ("prisma format", ["npx", "prisma", "format"]),
    ("prisma generate", ["npx", "prisma", "generate"]),
    ("prisma db push", ["npx", "prisma", "db", "push", "--accept-data-loss"]),
]


class PipelineStage(str, Enum):
    RESOLVE_SOURCE = "resolve_source"
    PATCH_MANIFEST = "patch_manifest"
    INSTALL_DEPENDENCIES = "install_dependencies"
    SCHEMA_SETUP = "schema_setup"
    SEED_DATA = "seed_data"
    PROVISION_COMPUTE = "provision_compute"
    DEPLOY = "deploy"
    CAPTURE_VERIFICATION = "capture_verification"
    PERSIST_RESULT = "persist_result"
    COMPLETE = "complete"
    FAILED = "failed"


class DeployAcceptance(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_DEPLOYED = "already_deployed"


class PipelineAlreadyRunning(Exception):
    """A pipeline for this generation is already in flight in this process."""
    pass


class PrefixedLogger(logging.LoggerAdapter):
    """Prefix every line so concurrent pipelines can be told apart."""

    def process(self, msg, kwargs):
        return f"[{self.extra['prefix']}] {msg}", kwargs


def preview_logger(generation_id: str) -> PrefixedLogger:
    return PrefixedLogger(logger, {"prefix": f"Preview {generation_id}"})


async def generate_lockfile(runner: StepRunner, workspace: Path, timeout: float) -> None:
    """
    Write package-lock.json without installing anything.

    Raises:
        DependencyInstallFailed: npm could not resolve the dependency tree
    """
    result = await runner.run(StepCommand(
        args=["npm", "install", "--package-lock-only", "--ignore-scripts"],
        cwd=workspace,
        timeout_seconds=timeout,
        label="npm lockfile",
    ))
    if not result.success:
        raise DependencyInstallFailed("Lockfile generation failed", result.output)


class PreviewPipeline:
    """Runs preview deploys and fixed-template redeploys."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: WorkspaceStore | None = None,
        compute: ComputeClient | None = None,
        runner: StepRunner | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        screenshotter: Callable[[str], Awaitable[str]] | None = None,
    ):
        self._settings = settings or get_settings()
        self._store = store or get_workspace_store()
        self._compute = compute or get_compute_client()
        self._runner = runner or step_runner
        self._session_factory = session_factory or async_session
        self._screenshotter = screenshotter or capture_screenshot
        # Generation IDs with a run in flight in this process
        self._in_flight: set[str] = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def is_running(self, generation_id: str) -> bool:
        return generation_id in self._in_flight

    def start(self, record: GenerationRecord, kind: PreviewKind) -> DeployAcceptance:
        """
        Accept a deploy request and run it in the background.

        Raises:
            PipelineAlreadyRunning: a run for the same generation is in flight
        """
        log = preview_logger(record.id)
        if record.has_preview:
            log.info(f"Already deployed as {record.preview_instance_id}, skipping")
            return DeployAcceptance.ALREADY_DEPLOYED
        if self.is_running(record.id):
            raise PipelineAlreadyRunning(record.id)

        self._in_flight.add(record.id)
        spawn(self._run_guarded(record.id, kind), name=f"preview-{record.id}")
        log.info(f"Accepted {kind.value} preview deploy")
        return DeployAcceptance.ACCEPTED

    async def _run_guarded(self, generation_id: str, kind: PreviewKind) -> PipelineStage:
        try:
            return await self.run(generation_id, kind)
        finally:
            self._in_flight.discard(generation_id)

    async def run(self, generation_id: str, kind: PreviewKind) -> PipelineStage:
        """
        Execute the full pipeline for one generation.

        Never raises for pipeline failures; returns the terminal stage.
        """
        log = preview_logger(generation_id)

        async with self._session_factory() as db:
            record = await db.get(GenerationRecord, generation_id)
            if record is None:
                log.error("Generation record not found")
                return PipelineStage.FAILED
            if record.has_preview:
                log.info(f"Already deployed as {record.preview_instance_id}, nothing to do")
                return PipelineStage.COMPLETE
            source_dir = record.source_dir
            archive_url = record.upload_blob_url

        stage = PipelineStage.RESOLVE_SOURCE
        try:
            log.info("Resolving source")
            workspace = await self._store.materialize(generation_id, archive_url, source_dir)
            if str(workspace) != source_dir:
                await self._persist_source_dir(generation_id, workspace)

            stage = PipelineStage.PATCH_MANIFEST
            if inject_binary_targets(workspace):
                log.info("Injected binary targets into schema")
            else:
                log.info("Schema patch not needed")

            stage = PipelineStage.INSTALL_DEPENDENCIES
            await self._install_dependencies(log, workspace)

            stage = PipelineStage.SCHEMA_SETUP
            await self._schema_setup(log, workspace)

            stage = PipelineStage.SEED_DATA
            await self._seed(log, workspace)

            stage = PipelineStage.PROVISION_COMPUTE
            log.info(f"Provisioning {kind.value} instance")
            instance_name = await self._compute.provision(generation_id, kind.value)

            stage = PipelineStage.DEPLOY
            log.info(f"Deploying to {instance_name}")
            url = await self._compute.deploy(instance_name, workspace, preview=True)

            stage = PipelineStage.CAPTURE_VERIFICATION
            screenshot = await self._capture(log, url)

            stage = PipelineStage.PERSIST_RESULT
            await self._persist_result(log, generation_id, kind, instance_name, url, screenshot)
        except Exception as e:
            log.error(f"Failed at {stage.value}: {e}")
            await self._mark_failed(log, generation_id, e)
            return PipelineStage.FAILED

        log.info(f"Preview live at {url}")
        return PipelineStage.COMPLETE

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _install_dependencies(self, log: PrefixedLogger, workspace: Path) -> None:
        log.info("Installing dependencies")
        result = await self._runner.run(StepCommand(
            args=["npm", "install", "--ignore-scripts"],
            cwd=workspace,
            timeout_seconds=self._settings.install_timeout,
            label="npm install",
        ))
        if not result.success:
            raise DependencyInstallFailed("Dependency install failed", result.output)

    async def _schema_setup(self, log: PrefixedLogger, workspace: Path) -> None:
        if not (workspace / SCHEMA_RELATIVE_PATH).exists():
            log.info("No schema found, skipping schema setup")
            return

        for label, args in SCHEMA_COMMANDS:
            try:
                await self._schema_step(workspace, label, args)
                log.info(f"{label} ok")
            except SchemaStepFailed as e:
                log.warning(f"{label} failed (non-fatal): {truncate(e.detail, LOG_STDERR_LIMIT)}")

    async def _schema_step(self, workspace: Path, label: str, args: list[str]) -> None:
        result = await self._runner.run(StepCommand(
            args=args,
            cwd=workspace,
            timeout_seconds=self._settings.schema_timeout,
            env=LOCAL_DATABASE_ENV,
            label=label,
        ))
        if not result.success:
            raise SchemaStepFailed(f"{label} failed", result.output)

    async def _seed(self, log: PrefixedLogger, workspace: Path) -> None:
        if not has_seed_script(workspace):
            log.info("No seed script, skipping")
            return

        try:
            await self._seed_step(workspace)
            log.info("Seeded database")
        except SeedFailed as e:
            log.warning(f"Seed failed (non-fatal): {truncate(e.detail, LOG_STDERR_LIMIT)}")

    async def _seed_step(self, workspace: Path) -> None:
        result = await self._runner.run(StepCommand(
            args=["npx", "tsx", SEED_RELATIVE_PATH.as_posix()],
            cwd=workspace,
            timeout_seconds=self._settings.seed_timeout,
            env=LOCAL_DATABASE_ENV,
            label="seed",
        ))
        if not result.success:
            raise SeedFailed("Seed failed", result.output)

    async def _capture(self, log: PrefixedLogger, url: str) -> str | None:
        await asyncio.sleep(self._settings.screenshot_settle_seconds)
        try:
            screenshot = await self._screenshotter(url)
        except ScreenshotFailed as e:
            log.warning(f"Screenshot failed (non-fatal): {truncate(str(e), 100)}")
            return None
        log.info("Screenshot captured")
        return screenshot

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_source_dir(self, generation_id: str, workspace: Path) -> None:
        async with self._session_factory() as db:
            record = await db.get(GenerationRecord, generation_id)
            if record is not None:
                record.source_dir = str(workspace)
                await db.commit()

    async def _persist_result(
        self,
        log: PrefixedLogger,
        generation_id: str,
        kind: PreviewKind,
        instance_name: str,
        url: str,
        screenshot: str | None,
    ) -> None:
        if kind == PreviewKind.DRAFT:
            expires_at = datetime.utcnow() + timedelta(days=self._settings.draft_preview_ttl_days)
        else:
            expires_at = None

        async with self._session_factory() as db:
            record = await db.get(GenerationRecord, generation_id)
            if record is None:
                log.warning("Generation record disappeared before persisting result")
                return

            record.preview_instance_id = instance_name
            record.preview_url = url
            record.preview_expires_at = expires_at
            if screenshot:
                record.screenshot = screenshot

            if record.app_id:
                listing = await db.get(MarketplaceApp, record.app_id)
                if listing is not None and not listing.is_draft:
                    listing.preview_url = url
                    if screenshot:
                        listing.screenshot = screenshot
                    log.info(f"Updated listing {listing.id}")

            await db.commit()

    async def _mark_failed(self, log: PrefixedLogger, generation_id: str, error: Exception) -> None:
        try:
            async with self._session_factory() as db:
                record = await db.get(GenerationRecord, generation_id)
                if record is None:
                    return
                record.status = GenerationStatus.FAILED.value
                record.error = truncate(str(error), RECORD_ERROR_LIMIT)
                await db.commit()
        except Exception as e:
            log.error(f"Could not record failure: {e}")

    # ------------------------------------------------------------------
    # Fixed-template redeploy
    # ------------------------------------------------------------------

    async def start_template_redeploy(self, template_name: str, instance_name: str) -> Path:
        """
        Copy the template and redeploy it to an existing instance in the background.

        Raises:
            SourceUnavailable: unknown template
        """
        loop = asyncio.get_event_loop()
        workspace = await loop.run_in_executor(
            None, self._store.copy_template, template_name, instance_name
        )
        spawn(
            self.redeploy_template(workspace, instance_name),
            name=f"redeploy-{instance_name}",
        )
        return workspace

    async def redeploy_template(self, workspace: Path, instance_name: str) -> bool:
        """
        Ship a copied template to an existing instance.

        No provisioning and no generation record writes. The copy is
        removed afterwards whatever the outcome.
        """
        log = PrefixedLogger(logger, {"prefix": f"RedeployTemplate {instance_name}"})
        try:
            log.info("Generating lockfile")
            await generate_lockfile(self._runner, workspace, self._settings.install_timeout)

            if remove_seed_script(workspace):
                log.info("Removed seed script")
            if patch_auth_for_preview(workspace):
                log.info("Patched auth for preview mode")

            await self._compute.set_secrets(
                instance_name, SecretsUpdate(set={"PREVIEW_MODE": "true"}, stage=True)
            )
            url = await self._compute.deploy(instance_name, workspace, preview=False)
            log.info(f"Redeployed, live at {url}")
            return True
        except OrchestratorError as e:
            log.error(f"Redeploy failed: {e}")
            return False
        finally:
            shutil.rmtree(workspace, ignore_errors=True)


# Global singleton
_preview_pipeline: PreviewPipeline | None = None


def get_preview_pipeline() -> PreviewPipeline:
    """Get or create the global preview pipeline."""
    global _preview_pipeline
    if _preview_pipeline is None:
        _preview_pipeline = PreviewPipeline()
    return _preview_pipeline
