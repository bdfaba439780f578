from pydantic import BaseModel
from functools import lru_cache
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    app_name: str = "Launchpad"
    database_url: str = "sqlite+aiosqlite:///./launchpad.db"
    log_level: str = "INFO"
    api_key: str | None = None  # Bearer token required on control routes when set
    cors_origins: list[str] = ["http://localhost:3000"]

    # Workspaces
    workspace_root: str = "/data/workspaces"
    template_root: str = "/data/templates"
    workspace_retention_hours: int = 24

    # Compute platform
    flyctl_path: str = os.path.expanduser("~/.fly/bin/flyctl")
    fly_region: str = "ord"
    instance_prefix: str = "launchpad"
    orchestrator_instance: str = "launchpad-builder"  # Never destroyed through the API
    deploy_wait_timeout: int = 300  # Passed to the platform, seconds
    deploy_process_timeout: int = 600  # Local cap on the deploy CLI process

    # Pipeline step timeouts (seconds)
    install_timeout: int = 300
    schema_timeout: int = 60
    seed_timeout: int = 30
    build_timeout: int = 180

    # Preview lifecycle
    draft_preview_ttl_days: int = 7
    sweep_interval_seconds: int = 3600
    screenshot_settle_seconds: float = 5.0

    # Local interactive preview
    local_preview_mode: bool = False
    local_preview_port: int = 4001
    preview_start_timeout: float = 120.0


@lru_cache
def get_settings() -> Settings:
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        api_key=os.getenv("API_KEY") or None,
        cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", ",".join(defaults.cors_origins)).split(",") if o.strip()],
        workspace_root=os.getenv("WORKSPACE_ROOT", defaults.workspace_root),
        template_root=os.getenv("TEMPLATE_ROOT", defaults.template_root),
        workspace_retention_hours=int(os.getenv("WORKSPACE_RETENTION_HOURS", defaults.workspace_retention_hours)),
        flyctl_path=os.getenv("FLYCTL_PATH", defaults.flyctl_path),
        fly_region=os.getenv("FLY_REGION", defaults.fly_region),
        instance_prefix=os.getenv("INSTANCE_PREFIX", defaults.instance_prefix),
        orchestrator_instance=os.getenv("ORCHESTRATOR_INSTANCE", defaults.orchestrator_instance),
        draft_preview_ttl_days=int(os.getenv("DRAFT_PREVIEW_TTL_DAYS", defaults.draft_preview_ttl_days)),
        sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", defaults.sweep_interval_seconds)),
        screenshot_settle_seconds=float(os.getenv("SCREENSHOT_SETTLE_SECONDS", defaults.screenshot_settle_seconds)),
        local_preview_mode=_env_bool("LOCAL_PREVIEW_MODE"),
        local_preview_port=int(os.getenv("LOCAL_PREVIEW_PORT", defaults.local_preview_port)),
        preview_start_timeout=float(os.getenv("PREVIEW_START_TIMEOUT", defaults.preview_start_timeout)),
    )
