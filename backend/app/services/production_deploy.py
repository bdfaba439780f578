"""
Full production deploy.

Builds a production instance from source inside the platform's image
builder, for deployments that do not start from a running preview:

    resolve source -> lockfile -> schema url -> provision (new instances
    only) -> staged secrets -> deploy

The deployment row moves DEPLOYING -> RUNNING, or FAILED on any error.
Sources are always deployed from a scratch copy that is removed
afterwards, so a generation's own workspace is never modified.
"""
import asyncio
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import async_session
from app.models import DeploymentStatus, GenerationRecord
from app.services.background import spawn
from app.services.compute import ComputeClient, get_compute_client
from app.services.compute.artifacts import uses_schema_config_file
from app.services.errors import SourceUnavailable
from app.services.preview_pipeline import PrefixedLogger, generate_lockfile
from app.services.promotion import TeamMember, build_promotion_secrets, set_deployment_status
from app.services.source_patches import ensure_datasource_url, remove_seed_script
from app.services.step_runner import StepRunner, step_runner
from app.services.workspace_store import WorkspaceStore, get_workspace_store

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "package-lock.json"


@dataclass
class ResolvedSource:
    """A deployable source tree and the scratch directory that holds it."""
    path: Path
    scratch: Path


class DeploymentAlreadyRunning(Exception):
    """A deploy for this deployment is already in flight in this process."""
    pass


def deploy_logger(deployment_id: str) -> PrefixedLogger:
    return PrefixedLogger(logger, {"prefix": f"Deploy {deployment_id}"})


class ProductionDeployer:
    """Runs full production deploys in the background."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: WorkspaceStore | None = None,
        compute: ComputeClient | None = None,
        runner: StepRunner | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self._settings = settings or get_settings()
        self._store = store or get_workspace_store()
        self._compute = compute or get_compute_client()
        self._runner = runner or step_runner
        self._session_factory = session_factory or async_session
        self._in_flight: set[str] = set()

    def is_running(self, deployment_id: str) -> bool:
        return deployment_id in self._in_flight

    async def resolve_source(
        self,
        db: AsyncSession,
        deployment_id: str,
        *,
        template_name: str | None = None,
        generation_id: str | None = None,
        archive_url: str | None = None,
    ) -> ResolvedSource:
        """
        Find the source for a deployment and stage it in a scratch directory.

        Tried in order: a fixed template, the generation's workspace, the
        generation's archive, then ``archive_url``. A missing template falls
        through to the other sources.

        Raises:
            SourceUnavailable: nothing produced a source tree
        """
        log = deploy_logger(deployment_id)
        loop = asyncio.get_event_loop()
        label = f"deploy-{deployment_id[:8]}"

        if template_name:
            try:
                path = await loop.run_in_executor(None, self._store.copy_template, template_name, label)
                log.info(f"Using template {template_name}")
                return ResolvedSource(path=path, scratch=path)
            except SourceUnavailable as e:
                log.info(f"{e}, trying other sources")

        if generation_id:
            record = await db.get(GenerationRecord, generation_id)
            if record is not None and record.source_dir and Path(record.source_dir).exists():
                path = await loop.run_in_executor(None, self._store.copy_source, Path(record.source_dir), label)
                log.info(f"Using workspace of generation {generation_id}")
                return ResolvedSource(path=path, scratch=path)
            if record is not None and record.source_dir:
                log.info(f"Workspace {record.source_dir} no longer exists on disk")
            if record is not None and record.upload_blob_url:
                archive_url = record.upload_blob_url

        if archive_url:
            log.info("Downloading source archive")
            path = await self._store.materialize(deployment_id, archive_url)
            return ResolvedSource(path=path, scratch=self._store.path_for(deployment_id))

        raise SourceUnavailable(f"No source found for deployment {deployment_id}")

    def start(
        self,
        deployment_id: str,
        org_slug: str,
        source: ResolvedSource,
        team_members: list[TeamMember],
        subdomain: str | None = None,
        existing_instance: str | None = None,
    ) -> None:
        """
        Run a deploy in the background.

        Raises:
            DeploymentAlreadyRunning: a deploy for the same deployment is in
                flight; the staged source is discarded
        """
        if self.is_running(deployment_id):
            shutil.rmtree(source.scratch, ignore_errors=True)
            raise DeploymentAlreadyRunning(deployment_id)

        self._in_flight.add(deployment_id)
        spawn(
            self._run_guarded(deployment_id, org_slug, source, team_members, subdomain, existing_instance),
            name=f"deploy-{deployment_id}",
        )
        deploy_logger(deployment_id).info("Accepted production deploy")

    async def _run_guarded(self, deployment_id: str, *args) -> bool:
        try:
            return await self.run(deployment_id, *args)
        finally:
            self._in_flight.discard(deployment_id)

    async def run(
        self,
        deployment_id: str,
        org_slug: str,
        source: ResolvedSource,
        team_members: list[TeamMember],
        subdomain: str | None = None,
        existing_instance: str | None = None,
    ) -> bool:
        """
        Build and ship ``source`` as a production instance.

        Never raises; a failure leaves the deployment FAILED. The scratch
        directory is removed whatever the outcome.

        Returns:
            True if the instance is live
        """
        log = deploy_logger(deployment_id)
        instance_name = existing_instance or self._compute.instance_name_for(deployment_id, org_slug)
        workspace = source.path

        try:
            if not await set_deployment_status(self._session_factory, deployment_id, DeploymentStatus.DEPLOYING):
                log.error("Deployment not found")
                return False

            if not (workspace / LOCKFILE_NAME).exists():
                log.info("Generating lockfile")
                await generate_lockfile(self._runner, workspace, self._settings.install_timeout)

            if remove_seed_script(workspace):
                log.info("Removed seed script")
            if not uses_schema_config_file(workspace) and ensure_datasource_url(workspace):
                log.info("Added datasource url to schema")

            if existing_instance:
                log.info(f"Redeploying to existing instance {instance_name}")
            else:
                log.info(f"Provisioning {instance_name}")
                await self._compute.provision(deployment_id, org_slug)

            await self._compute.set_secrets(instance_name, build_promotion_secrets(team_members, stage=True))
            url = await self._compute.deploy(instance_name, workspace, preview=False)
        except Exception as e:
            log.error(f"Failed: {e}")
            await set_deployment_status(
                self._session_factory, deployment_id, DeploymentStatus.FAILED, instance_id=instance_name
            )
            return False
        finally:
            shutil.rmtree(source.scratch, ignore_errors=True)

        fields = {"instance_id": instance_name, "url": url, "deployed_at": datetime.utcnow()}
        if subdomain:
            fields["subdomain"] = subdomain
        await set_deployment_status(self._session_factory, deployment_id, DeploymentStatus.RUNNING, **fields)
        log.info(f"Live at {url}")
        return True


# Global singleton
_production_deployer: ProductionDeployer | None = None


def get_production_deployer() -> ProductionDeployer:
    """Get or create the global production deployer."""
    global _production_deployer
    if _production_deployer is None:
        _production_deployer = ProductionDeployer()
    return _production_deployer
