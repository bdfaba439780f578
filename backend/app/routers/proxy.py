"""
Catch-all reverse proxy to the active local preview.

Mounted last, and only in local preview mode, so every request that no
control route matched ends up here. Redirects are relayed untouched and
response bodies are streamed.
"""
import logging

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from app.services.errors import PreviewNotReady, UpstreamUnreachable
from app.services.local_preview import ActivePreview, LocalPreviewManager, get_local_preview_manager

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})
BODYLESS_METHODS = frozenset({"GET", "HEAD"})
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

router = APIRouter(tags=["proxy"])

_proxy_client: httpx.AsyncClient | None = None


def get_proxy_client() -> httpx.AsyncClient:
    """Shared upstream client. Never follows redirects."""
    global _proxy_client
    if _proxy_client is None:
        _proxy_client = httpx.AsyncClient(
            follow_redirects=False,
            timeout=httpx.Timeout(connect=2.0, read=60.0, write=60.0, pool=5.0),
        )
    return _proxy_client


async def close_proxy_client() -> None:
    global _proxy_client
    if _proxy_client is not None:
        await _proxy_client.aclose()
        _proxy_client = None


def _ready_preview(manager: LocalPreviewManager) -> ActivePreview:
    preview = manager.active
    if preview is None or not preview.is_ready:
        raise PreviewNotReady("No active preview")
    return preview


def _forward_headers(request: Request, preview: ActivePreview) -> list[tuple[str, str]]:
    headers = [
        (name, value)
        for name, value in request.headers.items()
        if name not in ("host", "content-length") and name not in HOP_BY_HOP_HEADERS
    ]
    headers.append(("host", preview.host))
    return headers


async def _send_upstream(
    client: httpx.AsyncClient,
    request: Request,
    preview: ActivePreview,
) -> httpx.Response:
    url = f"{preview.base_url}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"

    body = None if request.method in BODYLESS_METHODS else await request.body()
    upstream_request = client.build_request(
        request.method,
        url,
        headers=_forward_headers(request, preview),
        content=body,
    )
    try:
        return await client.send(upstream_request, stream=True, follow_redirects=False)
    except httpx.HTTPError as e:
        raise UpstreamUnreachable(f"Preview on port {preview.port} unreachable", str(e)) from e


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_to_preview(
    request: Request,
    path: str,
    manager: LocalPreviewManager = Depends(get_local_preview_manager),
    client: httpx.AsyncClient = Depends(get_proxy_client),
):
    try:
        preview = _ready_preview(manager)
        upstream = await _send_upstream(client, request, preview)
    except PreviewNotReady:
        logger.debug(f"No ready preview for {request.method} /{path}")
        return JSONResponse(status_code=404, content={"detail": "No active preview"})
    except UpstreamUnreachable as e:
        logger.debug(str(e))
        return JSONResponse(status_code=502, content={"detail": "Preview unreachable"})

    response = StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    # Raw pairs keep repeated headers such as Set-Cookie intact
    response.raw_headers = [
        (name, value)
        for name, value in upstream.headers.raw
        if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
    ]
    return response
