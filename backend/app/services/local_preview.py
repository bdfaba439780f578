"""
Local interactive preview.

Runs one generation's dev server on a fixed local port so the catch-all
proxy can forward traffic to it. Only one preview is active at a time.

Single-writer invariant: every change to the active preview happens in
``start``/``stop`` under ``self._lock``, and ``start`` always stops the
previous preview before launching a new one. The proxy only reads
``active``.
"""
import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

import httpx

from app.config import Settings, get_settings
from app.services.errors import DependencyInstallFailed, PreviewNotReady, truncate
from app.services.source_patches import ensure_local_env, has_seed_script, patch_auth_for_preview
from app.services.step_runner import StepCommand, StepRunner, step_runner

logger = logging.getLogger(__name__)

PROBE_INTERVAL_SECONDS = 1.0
STOP_GRACE_SECONDS = 5.0
LOCAL_DATABASE_ENV = {"DATABASE_URL": "file:./dev.db"}


class PreviewStatus(str, Enum):
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


@dataclass
class ActivePreview:
    generation_id: str
    source_dir: Path
    port: int
    process: asyncio.subprocess.Process
    status: PreviewStatus = PreviewStatus.STARTING
    started_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def host(self) -> str:
        return f"127.0.0.1:{self.port}"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}"

    @property
    def is_ready(self) -> bool:
        return self.status == PreviewStatus.READY and self.process.returncode is None

    def to_dict(self) -> dict:
        return {
            "generation_id": self.generation_id,
            "port": self.port,
            "url": self.base_url,
            "status": self.status.value if self.process.returncode is None else PreviewStatus.STOPPED.value,
            "pid": self.process.pid,
            "started_at": self.started_at.isoformat(),
        }


class LocalPreviewManager:
    """Starts, probes and stops the single local preview process."""

    def __init__(self, settings: Settings | None = None, runner: StepRunner | None = None):
        self._settings = settings or get_settings()
        self._runner = runner or step_runner
        self._active: ActivePreview | None = None
        self._lock = asyncio.Lock()

    @property
    def port(self) -> int:
        return self._settings.local_preview_port

    @property
    def active(self) -> ActivePreview | None:
        return self._active

    def status(self) -> dict | None:
        return self._active.to_dict() if self._active else None

    async def start(self, generation_id: str, source_dir: str | Path) -> ActivePreview:
        """
        Stop any current preview, prepare the workspace and launch the dev
        server. Blocks until the server answers or the start timeout
        elapses.

        Raises:
            DependencyInstallFailed: npm install failed
            PreviewNotReady: the dev server could not be launched, or exited
                before becoming ready
        """
        source_dir = Path(source_dir)
        async with self._lock:
            await self._stop_locked()

            await self._prepare(generation_id, source_dir)

            logger.info(f"[Preview {generation_id}] Starting dev server on port {self.port}")
            env = os.environ.copy()
            env.update({
                "AUTH_SECRET": "preview-secret-key",
                "PREVIEW_MODE": "true",
                "PORT": str(self.port),
            })
            try:
                process = await asyncio.create_subprocess_exec(
                    "npx", "next", "dev", "-p", str(self.port),
                    cwd=str(source_dir),
                    env=env,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                    start_new_session=True,
                )
            except OSError as e:
                raise PreviewNotReady(f"Could not launch dev server for {generation_id}", str(e)) from e
            preview = ActivePreview(
                generation_id=generation_id,
                source_dir=source_dir,
                port=self.port,
                process=process,
            )
            self._active = preview

            if await self._wait_ready(preview):
                logger.info(f"[Preview {generation_id}] Ready at {preview.base_url}")
            elif process.returncode is not None:
                self._active = None
                raise PreviewNotReady(
                    f"Dev server for {generation_id} exited with code {process.returncode}"
                )
            else:
                logger.warning(
                    f"[Preview {generation_id}] No answer after {self._settings.preview_start_timeout}s, "
                    "marking ready anyway"
                )
            preview.status = PreviewStatus.READY
            return preview

    async def stop(self) -> bool:
        """Stop the active preview. Returns False if none was running."""
        async with self._lock:
            return await self._stop_locked()

    async def _stop_locked(self) -> bool:
        preview = self._active
        if preview is None:
            return False
        self._active = None
        preview.status = PreviewStatus.STOPPED
        await terminate_process_tree(preview.process)
        logger.info(f"[Preview {preview.generation_id}] Stopped")
        return True

    async def _prepare(self, generation_id: str, source_dir: Path) -> None:
        if ensure_local_env(source_dir):
            logger.info(f"[Preview {generation_id}] Wrote default .env")

        if not (source_dir / "node_modules").exists():
            logger.info(f"[Preview {generation_id}] Installing dependencies")
            result = await self._runner.run(StepCommand(
                args=["npm", "install"],
                cwd=source_dir,
                timeout_seconds=self._settings.install_timeout,
                label="npm install",
            ))
            if not result.success:
                raise DependencyInstallFailed("Dependency install failed", result.output)

        if not (source_dir / "dev.db").exists():
            await self._setup_database(generation_id, source_dir)

        if patch_auth_for_preview(source_dir):
            logger.info(f"[Preview {generation_id}] Patched auth for preview mode")

    async def _setup_database(self, generation_id: str, source_dir: Path) -> None:
        steps = [("prisma db push", ["npx", "prisma", "db", "push", "--accept-data-loss"])]
        if has_seed_script(source_dir):
            steps.append(("seed", ["npx", "tsx", "prisma/seed.ts"]))

        for label, args in steps:
            result = await self._runner.run(StepCommand(
                args=args,
                cwd=source_dir,
                timeout_seconds=self._settings.schema_timeout,
                env=LOCAL_DATABASE_ENV,
                label=label,
            ))
            if not result.success:
                logger.warning(
                    f"[Preview {generation_id}] {label} failed (non-fatal): {truncate(result.output, 200)}"
                )

    async def _wait_ready(self, preview: ActivePreview) -> bool:
        loop = asyncio.get_event_loop()
        deadline = loop.time() + self._settings.preview_start_timeout
        timeout = httpx.Timeout(connect=0.5, read=2.0, write=2.0, pool=0.5)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as client:
            while loop.time() < deadline:
                if preview.process.returncode is not None:
                    return False
                try:
                    response = await client.get(f"{preview.base_url}/")
                    if response.status_code < 500:
                        return True
                except httpx.HTTPError:
                    pass
                await asyncio.sleep(PROBE_INTERVAL_SECONDS)
        return False


async def terminate_process_tree(process: asyncio.subprocess.Process) -> None:
    """
    Terminate a process and everything it spawned.

    Signals the process group first; if that is unsupported or fails,
    falls back to the tracked child handle.
    """
    if process.returncode is not None:
        return

    _signal_tree(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=STOP_GRACE_SECONDS)
        return
    except asyncio.TimeoutError:
        pass

    _signal_tree(process, signal.SIGKILL)
    await process.wait()


def _signal_tree(process: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(os.getpgid(process.pid), sig)
    except (ProcessLookupError, PermissionError, OSError):
        try:
            if sig == signal.SIGKILL:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            pass


# Global singleton
_local_preview_manager: LocalPreviewManager | None = None


def get_local_preview_manager() -> LocalPreviewManager:
    """Get or create the global local preview manager."""
    global _local_preview_manager
    if _local_preview_manager is None:
        _local_preview_manager = LocalPreviewManager()
    return _local_preview_manager
