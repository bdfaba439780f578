"""
Fly.io compute client.

Drives the platform's control CLI (flyctl) through the pipeline step
runner. Each operation maps onto one or two CLI invocations and converts
non-zero exits into the orchestrator's error taxonomy.
"""
import json
import logging
import re
import secrets
import shutil
from pathlib import Path

from app.config import Settings, get_settings
from app.services.compute.artifacts import DOCKERFILE_NAME, write_deploy_artifacts
from app.services.compute.protocol import (
    ComputeClient,
    DeployRequest,
    InstanceInfo,
    ProvisionRequest,
    SecretsUpdate,
)
from app.services.errors import (
    ComputeCommandFailed,
    DeployFailed,
    DeployTimeout,
    InstanceProtected,
    ProvisionFailed,
    UnmanagedInstance,
    truncate,
)
from app.services.source_patches import patch_auth_for_preview
from app.services.step_runner import StepCommand, StepResult, StepRunner, step_runner

logger = logging.getLogger(__name__)

ALREADY_EXISTS_MARKERS = ("already exists", "already been taken")
NOT_FOUND_MARKERS = ("could not find app", "app not found")
CONTROL_TIMEOUT = 60.0

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]")


class FlyComputeClient(ComputeClient):
    """ComputeClient backed by flyctl."""

    def __init__(self, settings: Settings | None = None, runner: StepRunner | None = None):
        self._settings = settings or get_settings()
        self._runner = runner or step_runner

    # ---- naming / protection ----

    def instance_name_for(self, generation_id: str, kind: str) -> str:
        raw = f"{self._settings.instance_prefix}-{kind}-{generation_id[:8]}".lower()
        return _INVALID_NAME_CHARS.sub("-", raw)

    def is_managed(self, instance_name: str) -> bool:
        return instance_name.startswith(f"{self._settings.instance_prefix}-")

    def check_destroyable(self, instance_name: str) -> None:
        """
        Raises:
            InstanceProtected: the name is outside the managed prefix, or is
                the orchestrator's own instance
        """
        if instance_name == self._settings.orchestrator_instance:
            raise InstanceProtected(f"Refusing to destroy the orchestrator instance {instance_name}")
        if not self.is_managed(instance_name):
            raise UnmanagedInstance(f"Instance {instance_name} is not managed by this orchestrator")

    # ---- CLI plumbing ----

    async def _flyctl(
        self,
        *args: str,
        cwd: Path | None = None,
        timeout: float = CONTROL_TIMEOUT,
    ) -> StepResult:
        command = StepCommand(
            args=[self._settings.flyctl_path, *args],
            cwd=cwd,
            timeout_seconds=timeout,
            label=f"flyctl {' '.join(args[:2])}",
        )
        return await self._runner.run(command)

    # ---- operations ----

    async def provision(self, generation_id: str, kind: str) -> str:
        request = ProvisionRequest(
            instance_name=self.instance_name_for(generation_id, kind),
            region=self._settings.fly_region,
            initial_secrets={"AUTH_SECRET": secrets.token_hex(32)},
        )
        await self._provision(request)
        return request.instance_name

    async def _provision(self, request: ProvisionRequest) -> None:
        name = request.instance_name
        logger.info(f"Provisioning {name} in {request.region}")

        created = await self._flyctl("apps", "create", name, "--json")
        if not created.success and not any(m in created.output for m in ALREADY_EXISTS_MARKERS):
            raise ProvisionFailed(f"Failed to create instance {name}", created.output)

        volume = await self._flyctl(
            "volumes", "create", request.volume_name,
            "--size", str(request.volume_size_gb),
            "--region", request.region,
            "--app", name,
            "--yes",
        )
        if not volume.success and "already exists" not in volume.output:
            logger.warning(f"Volume create for {name} failed: {truncate(volume.output, 200)}")

        if request.initial_secrets:
            try:
                await self.set_secrets(name, SecretsUpdate(set=request.initial_secrets, stage=True))
            except ComputeCommandFailed as e:
                raise ProvisionFailed(f"Failed to stage secrets on {name}", e.detail) from e

        logger.info(f"Instance {name} ready for deploy")

    async def deploy(self, instance_name: str, workspace_path: Path, *, preview: bool = True) -> str:
        """
        Build (if needed) and ship a workspace.

        Preview deploys reuse the workspace's standalone build output and
        run ``npm run build`` only when it is missing. Full deploys build
        inside the image.

        Raises:
            DeployFailed: build produced no output or the platform rejected
                the deploy
            DeployTimeout: the CLI process exceeded the local cap
        """
        request = DeployRequest(
            instance_name=instance_name,
            workspace_path=Path(workspace_path),
            dockerfile=DOCKERFILE_NAME,
            wait_timeout_seconds=self._settings.deploy_wait_timeout,
        )
        workspace = request.workspace_path

        if preview:
            if patch_auth_for_preview(workspace):
                logger.info(f"Patched auth for preview mode in {workspace}")
            await self._ensure_standalone_build(workspace)

        write_deploy_artifacts(workspace, instance_name, self._settings.fly_region, preview=preview)

        logger.info(f"Deploying {workspace} to {instance_name}")
        result = await self._flyctl(
            "deploy",
            "--app", instance_name,
            "--dockerfile", request.dockerfile,
            "--yes",
            "--wait-timeout", str(request.wait_timeout_seconds),
            cwd=workspace,
            timeout=self._settings.deploy_process_timeout,
        )
        if result.timed_out:
            raise DeployTimeout(
                f"Deploy to {instance_name} exceeded {self._settings.deploy_process_timeout}s",
                result.output,
            )
        if not result.success:
            raise DeployFailed(f"Deploy to {instance_name} failed", result.output)

        url = f"https://{instance_name}.fly.dev"
        logger.info(f"{instance_name} live at {url}")
        return url

    async def _ensure_standalone_build(self, workspace: Path) -> None:
        standalone = workspace / ".next" / "standalone"
        if standalone.exists():
            return

        logger.info(f"Standalone output missing in {workspace}, running build")
        shutil.rmtree(workspace / ".next", ignore_errors=True)
        result = await self._runner.run(StepCommand(
            args=["npm", "run", "build"],
            cwd=workspace,
            timeout_seconds=self._settings.build_timeout,
            env={"DATABASE_URL": "file:./dev.db"},
            label="npm run build",
        ))
        if result.success:
            return
        # Builds that only warn can still exit non-zero
        if not standalone.exists():
            raise DeployFailed("Build did not produce standalone output", truncate(result.output, 200))
        logger.warning(f"Build exited {result.exit_code} but standalone output exists, continuing")

    async def set_secrets(self, instance_name: str, update: SecretsUpdate) -> None:
        """
        Apply a secrets update: set first, then unset.

        Unstaged changes restart the instance.
        """
        if update.set:
            pairs = [f"{key}={value}" for key, value in update.set.items()]
            args = ["secrets", "set", *pairs, "--app", instance_name]
            if update.stage:
                args.append("--stage")
            result = await self._flyctl(*args)
            if not result.success:
                raise ComputeCommandFailed(f"Failed to set secrets on {instance_name}", result.output)

        if update.unset:
            args = ["secrets", "unset", *update.unset, "--app", instance_name]
            if update.stage:
                args.append("--stage")
            result = await self._flyctl(*args)
            if not result.success:
                raise ComputeCommandFailed(f"Failed to unset secrets on {instance_name}", result.output)

        logger.info(
            f"Secrets on {instance_name}: set {sorted(update.set)} unset {sorted(update.unset)}"
            f"{' (staged)' if update.stage else ''}"
        )

    async def list_instances(self) -> list[InstanceInfo]:
        result = await self._flyctl("apps", "list", "--json")
        if not result.success:
            raise ComputeCommandFailed("Failed to list instances", result.output)

        try:
            entries = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise ComputeCommandFailed("Unparseable instance list", str(e)) from e

        return [
            InstanceInfo.from_wire(entry)
            for entry in entries
            if isinstance(entry, dict) and self.is_managed(entry.get("Name", ""))
        ]

    async def destroy(self, instance_name: str) -> None:
        """
        Tear down an instance. An instance the platform no longer knows
        about counts as destroyed.
        """
        self.check_destroyable(instance_name)
        result = await self._flyctl("apps", "destroy", instance_name, "--yes")
        if not result.success and any(m in result.output.lower() for m in NOT_FOUND_MARKERS):
            logger.info(f"{instance_name} already gone")
            return
        if not result.success:
            raise ComputeCommandFailed(f"Failed to destroy {instance_name}", result.output)
        logger.info(f"Destroyed {instance_name}")


# Global singleton
_compute_client: ComputeClient | None = None


def get_compute_client() -> ComputeClient:
    """Get or create the global compute client."""
    global _compute_client
    if _compute_client is None:
        _compute_client = FlyComputeClient()
    return _compute_client
