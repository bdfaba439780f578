"""
Error taxonomy for the preview and deployment orchestrator.

Fatal pipeline errors (SourceUnavailable, DependencyInstallFailed,
ProvisionFailed, DeployFailed, DeployTimeout) abort a pipeline run.
SchemaStepFailed, SeedFailed and ScreenshotFailed are raised inside their
step and swallowed at the step boundary. PreviewNotReady and
UpstreamUnreachable belong to the local proxy and map to 404 / 502.
"""

ERROR_TEXT_LIMIT = 500


def truncate(text: str | None, limit: int = ERROR_TEXT_LIMIT) -> str:
    """Trim upstream output so it fits in a log line or an error column."""
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""

    def __init__(self, message: str, detail: str | None = None):
        self.detail = truncate(detail) if detail else None
        super().__init__(f"{message}: {self.detail}" if self.detail else message)


class SourceUnavailable(OrchestratorError):
    """Neither a usable workspace nor a downloadable archive exists."""
    pass


class DependencyInstallFailed(OrchestratorError):
    pass


class ProvisionFailed(OrchestratorError):
    pass


class DeployFailed(OrchestratorError):
    pass


class DeployTimeout(DeployFailed):
    pass


class ComputeCommandFailed(OrchestratorError):
    """A control-plane command other than provision/deploy failed."""
    pass


class InstanceProtected(OrchestratorError):
    """Refused to touch an instance the orchestrator does not manage."""
    pass


class SchemaStepFailed(OrchestratorError):
    pass


class SeedFailed(OrchestratorError):
    pass


class ScreenshotFailed(OrchestratorError):
    pass


class PreviewNotReady(OrchestratorError):
    pass


class UpstreamUnreachable(OrchestratorError):
    pass


class UnmanagedInstance(InstanceProtected):
    """The instance name is outside the managed prefix."""
    pass
