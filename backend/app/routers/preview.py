"""
Local interactive preview control.

Only mounted when LOCAL_PREVIEW_MODE is enabled.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import require_api_key
from app.database import get_db
from app.models import GenerationRecord
from app.schemas import LocalPreviewRead, LocalPreviewStart
from app.services.errors import DependencyInstallFailed, PreviewNotReady, SourceUnavailable
from app.services.local_preview import LocalPreviewManager, get_local_preview_manager
from app.services.workspace_store import WorkspaceStore, get_workspace_store

router = APIRouter(prefix="/preview/local", tags=["preview"], dependencies=[Depends(require_api_key)])


@router.post("", response_model=LocalPreviewRead)
async def start_local_preview(
    request: LocalPreviewStart,
    db: AsyncSession = Depends(get_db),
    manager: LocalPreviewManager = Depends(get_local_preview_manager),
    store: WorkspaceStore = Depends(get_workspace_store),
):
    """Start the dev server for a generation. Blocks until it is ready."""
    record = await db.get(GenerationRecord, request.generation_id)
    if not record:
        raise HTTPException(status_code=404, detail="Generation not found")

    try:
        workspace = await store.materialize(record.id, record.upload_blob_url, record.source_dir)
    except SourceUnavailable as e:
        raise HTTPException(status_code=400, detail=str(e))
    if str(workspace) != record.source_dir:
        record.source_dir = str(workspace)
        await db.commit()

    try:
        preview = await manager.start(record.id, workspace)
    except DependencyInstallFailed as e:
        raise HTTPException(status_code=500, detail=str(e))
    except PreviewNotReady as e:
        raise HTTPException(status_code=502, detail=str(e))
    return preview.to_dict()


@router.get("", response_model=LocalPreviewRead)
async def get_local_preview(manager: LocalPreviewManager = Depends(get_local_preview_manager)):
    status = manager.status()
    if status is None:
        raise HTTPException(status_code=404, detail="No active preview")
    return status


@router.delete("")
async def stop_local_preview(manager: LocalPreviewManager = Depends(get_local_preview_manager)):
    stopped = await manager.stop()
    return {"ok": True, "stopped": stopped}
