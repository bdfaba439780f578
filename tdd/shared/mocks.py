"""
Mock infrastructure for orchestrator testing.

Provides stand-ins for the external command runner and the compute
platform so pipelines can be driven without npm, flyctl or a network.
"""
import re
from dataclasses import dataclass, field
from pathlib import Path

from app.services.compute import ComputeClient, InstanceInfo, SecretsUpdate
from app.services.errors import ComputeCommandFailed, DeployFailed, InstanceProtected, ProvisionFailed
from app.services.step_runner import StepCommand, StepResult


# =============================================================================
# Mock Step Runner
# =============================================================================


class MockStepRunner:
    """
    Records every command and answers from a table of canned results.

    Results are matched by substring against the joined argument list;
    the first match wins and anything unmatched succeeds.

    Usage:
        runner = MockStepRunner()
        runner.fail_on("npm install", stderr="ERESOLVE")
        await runner.run(StepCommand(args=["npm", "install"]))
    """

    def __init__(self):
        self.commands: list[StepCommand] = []
        self._responses: list[tuple[str, StepResult]] = []

    def respond(self, fragment: str, result: StepResult) -> None:
        self._responses.append((fragment, result))

    def fail_on(self, fragment: str, stderr: str = "boom", exit_code: int = 1) -> None:
        self.respond(fragment, StepResult(exit_code=exit_code, stderr=stderr))

    def timeout_on(self, fragment: str) -> None:
        self.respond(fragment, StepResult(exit_code=-1, stderr="timed out", timed_out=True))

    async def run(self, command: StepCommand) -> StepResult:
        self.commands.append(command)
        joined = " ".join(command.args)
        for fragment, result in self._responses:
            if fragment in joined:
                return result
        return StepResult(exit_code=0, stdout="ok")

    @property
    def command_lines(self) -> list[str]:
        return [" ".join(c.args) for c in self.commands]

    def ran(self, fragment: str) -> bool:
        return any(fragment in line for line in self.command_lines)


# =============================================================================
# Mock Compute Client
# =============================================================================


@dataclass
class MockComputeClient(ComputeClient):
    """
    In-memory compute platform.

    Tracks provisioned instances, deploys, secrets and destroys; individual
    operations can be told to fail.
    """
    prefix: str = "launchpad"
    protected: set[str] = field(default_factory=lambda: {"launchpad-builder"})
    instances: dict[str, InstanceInfo] = field(default_factory=dict)
    deploys: list[tuple[str, Path, bool]] = field(default_factory=list)
    secrets_updates: list[tuple[str, SecretsUpdate]] = field(default_factory=list)
    destroyed: list[str] = field(default_factory=list)

    fail_provision: bool = False
    fail_deploy: bool = False
    fail_secrets: bool = False
    fail_destroy_for: set[str] = field(default_factory=set)

    def instance_name_for(self, generation_id: str, kind: str) -> str:
        return re.sub(r"[^a-z0-9-]", "-", f"{self.prefix}-{kind}-{generation_id[:8]}".lower())

    def check_destroyable(self, instance_name: str) -> None:
        if instance_name in self.protected:
            raise InstanceProtected(instance_name)

    async def provision(self, generation_id: str, kind: str) -> str:
        if self.fail_provision:
            raise ProvisionFailed("provision failed", "quota exceeded")
        name = self.instance_name_for(generation_id, kind)
        self.instances[name] = InstanceInfo(name=name, status="pending")
        return name

    async def deploy(self, instance_name: str, workspace_path: Path, *, preview: bool = True) -> str:
        if self.fail_deploy:
            raise DeployFailed("deploy failed", "Error: release command failed")
        self.deploys.append((instance_name, Path(workspace_path), preview))
        if instance_name in self.instances:
            self.instances[instance_name].status = "deployed"
        return f"https://{instance_name}.fly.dev"

    async def set_secrets(self, instance_name: str, update: SecretsUpdate) -> None:
        if self.fail_secrets:
            raise ComputeCommandFailed("secrets failed", "app not found")
        self.secrets_updates.append((instance_name, update))

    async def list_instances(self) -> list[InstanceInfo]:
        return list(self.instances.values())

    async def destroy(self, instance_name: str) -> None:
        self.check_destroyable(instance_name)
        if instance_name in self.fail_destroy_for:
            raise ComputeCommandFailed(f"Failed to destroy {instance_name}", "timeout")
        self.instances.pop(instance_name, None)
        self.destroyed.append(instance_name)
