from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console

from ..schemas.job import JobData
from ..utils.json_utils import read_json, write_json
from ..utils.time import utc_now_iso
from .base import (
    ARCHIVE_SUFFIX,
    AutoSaveUnavailable,
    Capabilities,
    FileIdentifier,
    FileInfo,
    PersistFailure,
    PluginMetadata,
    StorageError,
    StoragePlugin,
    companion_name,
    identifier_filename,
)

console = Console()


class LocalFilePlugin(StoragePlugin):
    """
    A directory of .lqaboss archives. Saves go to a sibling <name>.json
    companion holding only the changed units; archives are never rewritten.
    """

    metadata = PluginMetadata(
        id="local",
        name="Local Files",
        description="Load and save files in a local directory",
    )
    capabilities = Capabilities(
        requires_auth=False,
        can_save=True,
        can_list=True,
        can_auto_save=True,
    )

    def __init__(self, root: str | Path = ".") -> None:
        self.root = Path(root)

    def _path(self, identifier: FileIdentifier) -> Path:
        filename = identifier_filename(identifier)
        if not filename:
            raise StorageError("filename is required for local files")
        return self.root / filename

    def validate_identifier(self, identifier: FileIdentifier, operation: str) -> List[str]:
        return [] if identifier_filename(identifier) else ["filename"]

    async def load_file(self, identifier: FileIdentifier) -> bytes:
        path = self._path(identifier)
        if not path.exists():
            raise StorageError(f"File not found: {path}")
        return await asyncio.to_thread(path.read_bytes)

    def _companion_path(self, identifier: FileIdentifier, name: str) -> Path:
        if identifier_filename(identifier):
            return self._path(identifier).with_name(companion_name(name))
        return self.root / companion_name(name)

    async def save_file(self, identifier: FileIdentifier, job: JobData) -> None:
        path = self._companion_path(identifier, self._path(identifier).name)
        payload = job.to_json_dict()
        payload["updatedAt"] = utc_now_iso()
        try:
            await asyncio.to_thread(write_json, path, payload)
        except OSError as exc:
            raise PersistFailure(f"Failed to write {path}: {exc}") from exc
        console.print(f"[green]Saved[/green] {len(job.tus)} changed unit(s) to {path}")

    async def load_auto_save_data(self, identifier: FileIdentifier, name: str) -> Optional[JobData]:
        path = self._companion_path(identifier, name)
        if not path.exists():
            return None
        try:
            data = await asyncio.to_thread(read_json, path)
            saved = JobData.model_validate(data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise AutoSaveUnavailable(f"Unreadable companion {path}: {exc}") from exc

        expected = identifier.get("jobGuid")
        if expected and saved.job_guid and saved.job_guid != expected:
            console.print(
                f'[yellow]Warning:[/yellow] {path.name} jobGuid "{saved.job_guid}" '
                f'does not match archive jobGuid "{expected}", ignoring it'
            )
            return None
        return saved

    async def list_files(self, location: Optional[str] = None) -> List[FileInfo]:
        folder = self.root / location if location else self.root
        if not folder.is_dir():
            raise StorageError(f"Not a directory: {folder}")
        files: List[FileInfo] = []
        for p in sorted(folder.glob(f"*{ARCHIVE_SUFFIX}")):
            stat = p.stat()
            files.append(
                FileInfo(
                    name=p.name,
                    size=stat.st_size,
                    updated_at=_mtime_iso(stat.st_mtime),
                    identifier={"filename": str(p.relative_to(self.root))},
                )
            )
        return files


def _mtime_iso(mtime: float) -> str:
    return datetime.fromtimestamp(mtime, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
