"""
Workspace Store.

Owns the on-disk source directories keyed by generation ID:
- Materialization (reuse an existing path, or download + extract an archive)
- Deletion (recursive, tolerant of missing directories)
- Enumeration for the stale-workspace sweep
- Scratch copies of templates and generation sources for full deploys
"""
from __future__ import annotations

import asyncio
import io
import logging
import shutil
import tempfile
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator

import httpx

from app.config import Settings, get_settings
from app.services.errors import SourceUnavailable

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
COPY_SKIP_DIRS = frozenset({"node_modules", ".next"})


@dataclass
class WorkspaceEntry:
    """A directory found under the workspace root."""
    generation_id: str
    path: Path
    modified_at: datetime


class WorkspaceStore:
    """
    Filesystem primitives for generation workspaces.

    A workspace is ``<workspace_root>/<generation_id>``. The store never
    decides *whether* a workspace may be deleted; that is the garbage
    collector's job.
    """

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self._settings = settings or get_settings()
        self._http_client = http_client

    @property
    def root(self) -> Path:
        return Path(self._settings.workspace_root)

    def path_for(self, generation_id: str) -> Path:
        return self.root / generation_id

    async def materialize(
        self,
        generation_id: str,
        archive_url: str | None = None,
        existing_path: str | None = None,
    ) -> Path:
        """
        Resolve the source tree for a generation.

        Returns ``existing_path`` unchanged when it exists on disk. Otherwise
        downloads and extracts ``archive_url`` into a fresh workspace
        directory; the caller persists the returned path.

        Raises:
            SourceUnavailable: no usable path and no archive URL, or the
                archive could not be fetched/extracted
        """
        if existing_path and Path(existing_path).exists():
            logger.info(f"[Workspace {generation_id}] Reusing existing workspace {existing_path}")
            return Path(existing_path)

        if existing_path:
            logger.info(f"[Workspace {generation_id}] Cached path {existing_path} no longer exists on disk")

        if not archive_url:
            raise SourceUnavailable(f"No source available for generation {generation_id}")

        logger.info(f"[Workspace {generation_id}] Downloading source archive")
        payload = await self._download(archive_url)

        target = self.path_for(generation_id)
        loop = asyncio.get_event_loop()
        source_dir = await loop.run_in_executor(None, self._extract, payload, target)
        logger.info(f"[Workspace {generation_id}] Extracted to {source_dir}")
        return source_dir

    async def _download(self, url: str) -> bytes:
        client = self._http_client or httpx.AsyncClient(timeout=httpx.Timeout(120.0, connect=10.0))
        try:
            response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            raise SourceUnavailable("Failed to download archive", str(e)) from e
        finally:
            if self._http_client is None:
                await client.aclose()

        if response.status_code >= 400:
            raise SourceUnavailable(
                "Failed to download archive",
                f"{response.status_code} {response.reason_phrase}",
            )
        return response.content

    def _extract(self, payload: bytes, target: Path) -> Path:
        """Extract a zip archive and return the directory holding the manifest."""
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
        target.mkdir(parents=True, exist_ok=True)
        resolved_target = target.resolve()

        try:
            archive = zipfile.ZipFile(io.BytesIO(payload))
        except zipfile.BadZipFile as e:
            raise SourceUnavailable("Archive is not a valid zip file", str(e)) from e

        with archive:
            names = archive.namelist()
            for name in names:
                destination = (target / name).resolve()
                if not destination.is_relative_to(resolved_target):
                    raise SourceUnavailable(f"Archive member escapes workspace: {name}")
            archive.extractall(target)

        if MANIFEST_NAME in names:
            return target

        # Archives often wrap everything in one top-level folder
        for name in names:
            parts = name.split("/")
            if len(parts) == 2 and parts[1] == MANIFEST_NAME:
                return target / parts[0]

        return target

    def delete(self, generation_id: str) -> bool:
        """
        Recursively remove a generation's workspace.

        Returns:
            True if something was deleted, False if there was nothing there
        """
        path = self.path_for(generation_id)
        if not path.exists():
            return False
        shutil.rmtree(path)
        logger.info(f"[Workspace {generation_id}] Deleted {path}")
        return True

    def iter_entries(self) -> Iterator[WorkspaceEntry]:
        """Yield every directory directly under the workspace root."""
        if not self.root.exists():
            return
        for child in self.root.iterdir():
            if not child.is_dir():
                continue
            yield WorkspaceEntry(
                generation_id=child.name,
                path=child,
                modified_at=datetime.utcfromtimestamp(child.stat().st_mtime),
            )

    def copy_template(self, template_name: str, label: str) -> Path:
        """
        Copy a fixed template tree to a fresh temporary directory.

        Build output and installed dependencies are not copied.

        Raises:
            SourceUnavailable: if the template does not exist
        """
        template_dir = Path(self._settings.template_root) / template_name
        if not template_name or "/" in template_name or not template_dir.is_dir():
            raise SourceUnavailable(f'Template "{template_name}" not found')

        tmp_dir = self.copy_source(template_dir, f"template-{label[:16]}")
        logger.info(f"Copied template {template_name} -> {tmp_dir}")
        return tmp_dir

    def copy_source(self, source_dir: Path, label: str) -> Path:
        """
        Copy a source tree to a fresh temporary directory, leaving out build
        output and installed dependencies. The caller removes the copy.
        """
        tmp_dir = Path(tempfile.mkdtemp(prefix=f"launchpad-{label}-"))
        shutil.copytree(
            source_dir,
            tmp_dir,
            dirs_exist_ok=True,
            ignore=lambda _dir, names: [n for n in names if n in COPY_SKIP_DIRS],
        )
        return tmp_dir


# Global singleton
_workspace_store: WorkspaceStore | None = None


def get_workspace_store() -> WorkspaceStore:
    """Get or create the global workspace store."""
    global _workspace_store
    if _workspace_store is None:
        _workspace_store = WorkspaceStore()
    return _workspace_store
