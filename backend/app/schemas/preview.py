"""
Preview deploy schemas.

The builder API is consumed by a JavaScript platform, so the wire format
is camelCase. Fields are snake_case in Python and aliased.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models import PreviewKind


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DeployPreviewRequest(CamelModel):
    generation_id: str = Field(alias="generationId", min_length=1)
    kind: PreviewKind = PreviewKind.DRAFT


class DeployPreviewResponse(CamelModel):
    status: str  # "accepted" | "already_deployed"
    generation_id: str = Field(alias="generationId")
    preview_url: str | None = Field(default=None, alias="previewUrl")


class RedeployTemplateRequest(CamelModel):
    template_name: str = Field(alias="templateName", min_length=1)
    instance_name: str = Field(alias="instanceName", min_length=1)


class RedeployTemplateResponse(CamelModel):
    status: str
    instance_name: str = Field(alias="instanceName")


class LocalPreviewStart(CamelModel):
    generation_id: str = Field(alias="generationId", min_length=1)


class LocalPreviewRead(CamelModel):
    generation_id: str = Field(alias="generationId")
    port: int
    url: str
    status: str  # "starting" | "ready" | "stopped"
    pid: int | None = None
    started_at: datetime = Field(alias="startedAt")
