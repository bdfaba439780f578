"""
Compute control protocol.

Typed request/response structures for each control-plane operation, plus
the abstract client the pipeline, garbage collector and promotion flow
depend on. Field names follow the platform's wire shape via ``to_wire`` /
``from_wire`` so schema drift shows up in one place.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class ProvisionRequest:
    """Create (or reuse) base infrastructure for one instance."""
    instance_name: str
    region: str
    volume_name: str = "data"
    volume_size_gb: int = 1
    initial_secrets: Dict[str, str] = field(default_factory=dict)


@dataclass
class DeployRequest:
    """Ship a workspace to an existing instance."""
    instance_name: str
    workspace_path: Path
    dockerfile: str = "Dockerfile.fly"
    wait_timeout_seconds: int = 300


@dataclass
class SecretsUpdate:
    """
    Environment changes for a running instance.

    ``stage=True`` records the values without restarting; they are picked
    up by the next deploy. Unstaged changes restart the instance.
    """
    set: Dict[str, str] = field(default_factory=dict)
    unset: List[str] = field(default_factory=list)
    stage: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.set and not self.unset


@dataclass
class ReleaseInfo:
    version: int
    created_at: Optional[str] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ReleaseInfo":
        return cls(version=int(data.get("Version", 0)), created_at=data.get("CreatedAt"))

    def to_wire(self) -> Dict[str, Any]:
        return {"version": self.version, "createdAt": self.created_at}


@dataclass
class InstanceInfo:
    """One entry of the instance inventory."""
    name: str
    status: str
    hostname: Optional[str] = None
    current_release: Optional[ReleaseInfo] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "InstanceInfo":
        release = data.get("CurrentRelease")
        return cls(
            name=data["Name"],
            status=data.get("Status", "unknown"),
            hostname=data.get("Hostname"),
            current_release=ReleaseInfo.from_wire(release) if release else None,
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "hostname": self.hostname,
            "currentRelease": self.current_release.to_wire() if self.current_release else None,
        }


class ComputeClient(ABC):
    """Control-plane operations used by the orchestrator."""

    @abstractmethod
    def instance_name_for(self, generation_id: str, kind: str) -> str:
        """Stable instance name for a generation and preview kind."""
        pass

    @abstractmethod
    def check_destroyable(self, instance_name: str) -> None:
        """Raise InstanceProtected if the instance must not be destroyed."""
        pass

    @abstractmethod
    async def provision(self, generation_id: str, kind: str) -> str:
        """Idempotently create base infrastructure; returns the instance name."""
        pass

    @abstractmethod
    async def deploy(self, instance_name: str, workspace_path: Path, *, preview: bool = True) -> str:
        """Build and ship the workspace; returns the public URL."""
        pass

    @abstractmethod
    async def set_secrets(self, instance_name: str, update: SecretsUpdate) -> None:
        pass

    @abstractmethod
    async def list_instances(self) -> List[InstanceInfo]:
        pass

    @abstractmethod
    async def destroy(self, instance_name: str) -> None:
        pass
