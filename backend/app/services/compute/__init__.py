from app.services.compute.protocol import (
    ComputeClient,
    DeployRequest,
    InstanceInfo,
    ProvisionRequest,
    ReleaseInfo,
    SecretsUpdate,
)
from app.services.compute.fly import FlyComputeClient, get_compute_client

__all__ = [
    "ComputeClient",
    "DeployRequest",
    "InstanceInfo",
    "ProvisionRequest",
    "ReleaseInfo",
    "SecretsUpdate",
    "FlyComputeClient",
    "get_compute_client",
]
