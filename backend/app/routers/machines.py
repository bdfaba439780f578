"""
Instance control endpoints: inventory, teardown, secrets and promotion.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from app.auth import require_api_key
from app.schemas import LaunchRequest, MachineRead, SecretsRequest
from app.services.background import spawn
from app.services.compute import ComputeClient, SecretsUpdate, get_compute_client
from app.services.errors import ComputeCommandFailed, InstanceProtected, UnmanagedInstance
from app.services.promotion import PromotionController, TeamMember, get_promotion_controller

logger = logging.getLogger(__name__)

router = APIRouter(tags=["machines"], dependencies=[Depends(require_api_key)])


@router.get("/machines", response_model=list[MachineRead])
async def list_machines(compute: ComputeClient = Depends(get_compute_client)):
    try:
        instances = await compute.list_instances()
    except ComputeCommandFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [instance.to_wire() for instance in instances]


@router.delete("/machines/{instance_name}")
async def destroy_machine(instance_name: str, compute: ComputeClient = Depends(get_compute_client)):
    try:
        await compute.destroy(instance_name)
    except UnmanagedInstance as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InstanceProtected as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ComputeCommandFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"ok": True, "destroyed": instance_name}


@router.post("/secrets/{instance_name}")
async def update_secrets(
    instance_name: str,
    request: SecretsRequest,
    compute: ComputeClient = Depends(get_compute_client),
):
    """Set and/or unset environment secrets. Unstaged: the instance restarts."""
    update = SecretsUpdate(set=request.set, unset=request.unset)
    if update.is_empty:
        raise HTTPException(status_code=400, detail="Nothing to set or unset")

    try:
        await compute.set_secrets(instance_name, update)
    except ComputeCommandFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"ok": True}


@router.post("/launch", status_code=202)
async def launch(
    request: LaunchRequest,
    controller: PromotionController = Depends(get_promotion_controller),
):
    """Promote a preview instance to production in the background."""
    members = [
        TeamMember(name=m.name, email=m.email, password_hash=m.password_hash)
        for m in request.team_members
    ]
    spawn(
        controller.promote(request.deployment_id, request.instance_name, members, request.subdomain),
        name=f"launch-{request.deployment_id}",
    )
    logger.info(f"Accepted launch of {request.instance_name} for deployment {request.deployment_id}")
    return {"status": "accepted", "deploymentId": request.deployment_id}
