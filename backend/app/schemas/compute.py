"""
Instance control schemas: secrets, promotion, production deploys and the
machine inventory.
"""
from pydantic import BaseModel, ConfigDict, Field


class SecretsRequest(BaseModel):
    set: dict[str, str] = Field(default_factory=dict)
    unset: list[str] = Field(default_factory=list)


class TeamMemberIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str
    password_hash: str | None = Field(default=None, alias="passwordHash")


class LaunchRequest(BaseModel):
    """Promote a running preview instance to production."""
    model_config = ConfigDict(populate_by_name=True)

    deployment_id: str = Field(alias="deploymentId", min_length=1)
    instance_name: str = Field(alias="instanceName", min_length=1)
    team_members: list[TeamMemberIn] = Field(default_factory=list, alias="teamMembers")
    subdomain: str | None = None


class ProductionDeployRequest(BaseModel):
    """
    Deploy an organization's app to production.

    One of ``generation_id``, ``upload_blob_url`` or ``template_app`` names
    the source. A preview launch with an existing instance is promoted in
    place instead of rebuilt.
    """
    model_config = ConfigDict(populate_by_name=True)

    deployment_id: str = Field(alias="deploymentId", min_length=1)
    org_slug: str = Field(alias="orgSlug", min_length=1)
    generation_id: str | None = Field(default=None, alias="generationId")
    upload_blob_url: str | None = Field(default=None, alias="uploadBlobUrl")
    template_app: str | None = Field(default=None, alias="templateApp")
    team_members: list[TeamMemberIn] = Field(default_factory=list, alias="teamMembers")
    subdomain: str | None = None
    existing_instance_id: str | None = Field(default=None, alias="existingInstanceId")
    is_preview_launch: bool = Field(default=False, alias="isPreviewLaunch")


class DeploymentAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    deployment_id: str = Field(alias="deploymentId")


class ReleaseRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: int
    created_at: str | None = Field(default=None, alias="createdAt")


class MachineRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    status: str
    hostname: str | None = None
    current_release: ReleaseRead | None = Field(default=None, alias="currentRelease")
