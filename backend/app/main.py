import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.database import init_db
from app.routers import deploy, machines, preview, proxy
from app.services.background import in_flight

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.database import engine
    from app.services.garbage_collector import get_garbage_collector
    from app.services.local_preview import get_local_preview_manager

    await init_db()
    collector = get_garbage_collector()
    await collector.start()
    yield
    await collector.stop()
    if settings.local_preview_mode:
        await get_local_preview_manager().stop()
        await proxy.close_proxy_client()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Preview and deployment orchestrator for generated apps",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(deploy.router)
app.include_router(machines.router)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "app": settings.app_name,
        "local_preview_mode": settings.local_preview_mode,
        "background_tasks": in_flight(),
    }


if settings.local_preview_mode:
    app.include_router(preview.router)
    # Catch-all: must be registered after every other route
    app.include_router(proxy.router)
