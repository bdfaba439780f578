from app.models.generation import GenerationRecord, GenerationStatus, PreviewKind, TERMINAL_STATUSES
from app.models.marketplace import MarketplaceApp, OrgDeployment, DeploymentStatus

__all__ = [
    "GenerationRecord",
    "GenerationStatus",
    "PreviewKind",
    "TERMINAL_STATUSES",
    "MarketplaceApp",
    "OrgDeployment",
    "DeploymentStatus",
]
