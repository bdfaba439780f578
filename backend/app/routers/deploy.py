import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import require_api_key
from app.database import get_db
from app.models import GenerationRecord, OrgDeployment
from app.schemas import (
    DeploymentAccepted,
    DeployPreviewRequest,
    DeployPreviewResponse,
    ProductionDeployRequest,
    RedeployTemplateRequest,
    RedeployTemplateResponse,
)
from app.services.background import spawn
from app.services.errors import SourceUnavailable
from app.services.preview_pipeline import (
    DeployAcceptance,
    PipelineAlreadyRunning,
    PreviewPipeline,
    get_preview_pipeline,
)
from app.services.production_deploy import (
    DeploymentAlreadyRunning,
    ProductionDeployer,
    get_production_deployer,
)
from app.services.promotion import PromotionController, TeamMember, get_promotion_controller

logger = logging.getLogger(__name__)

router = APIRouter(tags=["deploy"], dependencies=[Depends(require_api_key)])


@router.post("/deploy-preview", response_model=DeployPreviewResponse, status_code=202)
async def deploy_preview(
    request: DeployPreviewRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: PreviewPipeline = Depends(get_preview_pipeline),
):
    """
    Deploy a preview instance for a generation.

    Returns 202 immediately; the outcome lands on the generation record.
    A generation that already has a preview gets 200 and nothing runs.
    """
    record = await db.get(GenerationRecord, request.generation_id)
    if not record:
        raise HTTPException(status_code=404, detail="Generation not found")

    if record.has_preview:
        return JSONResponse(
            status_code=200,
            content=DeployPreviewResponse(
                status=DeployAcceptance.ALREADY_DEPLOYED.value,
                generation_id=record.id,
                preview_url=record.preview_url,
            ).model_dump(by_alias=True),
        )

    if not record.source_dir and not record.upload_blob_url:
        raise HTTPException(status_code=400, detail="No source available for this generation")

    try:
        acceptance = pipeline.start(record, request.kind)
    except PipelineAlreadyRunning:
        raise HTTPException(status_code=409, detail="A deploy for this generation is already running")

    return DeployPreviewResponse(status=acceptance.value, generation_id=record.id)


@router.post("/redeploy-preview-template", response_model=RedeployTemplateResponse, status_code=202)
async def redeploy_preview_template(
    request: RedeployTemplateRequest,
    pipeline: PreviewPipeline = Depends(get_preview_pipeline),
):
    """Redeploy a fixed template to an existing preview instance."""
    try:
        await pipeline.start_template_redeploy(request.template_name, request.instance_name)
    except SourceUnavailable as e:
        raise HTTPException(status_code=404, detail=str(e))

    return RedeployTemplateResponse(status="accepted", instance_name=request.instance_name)


@router.post("/deploy", response_model=DeploymentAccepted, status_code=202)
async def deploy_production(
    request: ProductionDeployRequest,
    db: AsyncSession = Depends(get_db),
    deployer: ProductionDeployer = Depends(get_production_deployer),
    controller: PromotionController = Depends(get_promotion_controller),
):
    """
    Deploy an organization's app to production.

    A preview launch with an existing instance is promoted in place; any
    other request is built from source. Returns 202 immediately; the
    outcome lands on the deployment record.
    """
    if not (request.generation_id or request.upload_blob_url or request.template_app):
        raise HTTPException(
            status_code=400,
            detail="One of generationId, uploadBlobUrl or templateApp is required",
        )

    if not await db.get(OrgDeployment, request.deployment_id):
        raise HTTPException(status_code=404, detail="Deployment not found")

    members = [
        TeamMember(name=m.name, email=m.email, password_hash=m.password_hash)
        for m in request.team_members
    ]

    if request.is_preview_launch and request.existing_instance_id:
        spawn(
            controller.promote(request.deployment_id, request.existing_instance_id, members, request.subdomain),
            name=f"launch-{request.deployment_id}",
        )
        logger.info(f"Promoting {request.existing_instance_id} for deployment {request.deployment_id}")
        return DeploymentAccepted(status="accepted", deployment_id=request.deployment_id)

    if deployer.is_running(request.deployment_id):
        raise HTTPException(status_code=409, detail="A deploy for this deployment is already running")

    try:
        source = await deployer.resolve_source(
            db,
            request.deployment_id,
            template_name=request.template_app,
            generation_id=request.generation_id,
            archive_url=request.upload_blob_url,
        )
    except SourceUnavailable as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        deployer.start(
            request.deployment_id,
            request.org_slug,
            source,
            members,
            subdomain=request.subdomain,
            existing_instance=request.existing_instance_id,
        )
    except DeploymentAlreadyRunning:
        raise HTTPException(status_code=409, detail="A deploy for this deployment is already running")

    return DeploymentAccepted(status="accepted", deployment_id=request.deployment_id)
