from app.schemas.preview import (
    DeployPreviewRequest,
    DeployPreviewResponse,
    RedeployTemplateRequest,
    RedeployTemplateResponse,
    LocalPreviewStart,
    LocalPreviewRead,
)
from app.schemas.compute import (
    SecretsRequest,
    TeamMemberIn,
    LaunchRequest,
    ProductionDeployRequest,
    DeploymentAccepted,
    MachineRead,
    ReleaseRead,
)

__all__ = [
    "DeployPreviewRequest",
    "DeployPreviewResponse",
    "RedeployTemplateRequest",
    "RedeployTemplateResponse",
    "LocalPreviewStart",
    "LocalPreviewRead",
    "SecretsRequest",
    "TeamMemberIn",
    "LaunchRequest",
    "ProductionDeployRequest",
    "DeploymentAccepted",
    "MachineRead",
    "ReleaseRead",
]
