from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

import requests
from pydantic import ValidationError
from rich.console import Console

from ..schemas.job import JobData
from ..utils.time import utc_now_iso
from .base import (
    ARCHIVE_SUFFIX,
    AutoSaveUnavailable,
    Capabilities,
    FileIdentifier,
    FileInfo,
    PersistFailure,
    PluginMetadata,
    StorageAuthError,
    StorageError,
    StoragePlugin,
    companion_name,
    identifier_filename,
)

console = Console()


class GCSNotFound(StorageError):
    pass


@dataclass
class GCSClient:
    token: str
    base_url: str = "https://storage.googleapis.com"
    timeout_s: int = 30

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def _check(self, resp: requests.Response, action: str) -> None:
        if resp.status_code == 401:
            raise StorageAuthError("Authentication expired. Please sign in again.")
        if resp.status_code == 404:
            raise GCSNotFound(f"Failed to {action}: not found")
        if not resp.ok:
            raise StorageError(f"Failed to {action}: {resp.status_code} {resp.reason}")

    def download(self, bucket: str, object_name: str) -> bytes:
        url = f"{self.base_url}/storage/v1/b/{bucket}/o/{quote(object_name, safe='')}"
        resp = requests.get(url, headers=self._headers(), params={"alt": "media"}, timeout=self.timeout_s)
        self._check(resp, "load file")
        return resp.content

    def upload_json(self, bucket: str, object_name: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/upload/storage/v1/b/{bucket}/o"
        headers = {**self._headers(), "Content-Type": "application/json"}
        body = json.dumps(obj, ensure_ascii=False, indent=2).encode("utf-8")
        resp = requests.post(
            url,
            headers=headers,
            params={"uploadType": "media", "name": object_name},
            data=body,
            timeout=self.timeout_s,
        )
        self._check(resp, "save file")
        return resp.json()

    def list_objects(self, bucket: str, prefix: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/storage/v1/b/{bucket}/o"
        params: Dict[str, Any] = {"prefix": f"{prefix}/", "delimiter": "/"}
        items: List[Dict[str, Any]] = []
        while True:
            resp = requests.get(url, headers=self._headers(), params=params, timeout=self.timeout_s)
            self._check(resp, "list files")
            data = resp.json()
            items.extend(data.get("items") or [])
            token = data.get("nextPageToken")
            if not token:
                break
            params["pageToken"] = token
        return items


def parse_path(path: str) -> Optional[FileIdentifier]:
    """
    Deep-link path "/gcs/<bucket>/<prefix>/<file>.lqaboss" (file optional).
    """
    parts = [p for p in path.split("/") if p]
    if "gcs" not in parts:
        return None
    rest = parts[parts.index("gcs") + 1 :]
    if len(rest) < 2:
        return None
    ident: FileIdentifier = {"bucket": unquote(rest[0]), "prefix": unquote(rest[1])}
    if len(rest) >= 3 and rest[2].endswith(ARCHIVE_SUFFIX):
        ident["filename"] = unquote(rest[2])
    return ident


def build_path(identifier: FileIdentifier) -> str:
    path = f"/gcs/{quote(identifier['bucket'], safe='')}/{quote(identifier['prefix'], safe='')}/"
    filename = identifier_filename(identifier)
    if filename:
        path += quote(filename, safe="")
    return path


class GCSPlugin(StoragePlugin):
    """
    Google Cloud Storage bucket/prefix backend.

    The OAuth flow happens elsewhere; this plugin only needs an access
    token, read from `token_env` (typically set through .env).
    """

    metadata = PluginMetadata(
        id="gcs",
        name="Google Cloud Storage",
        description="Load and save files from GCS buckets",
    )
    capabilities = Capabilities(
        requires_auth=True,
        can_save=True,
        can_list=True,
        can_auto_save=True,
    )

    def __init__(
        self,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
        token_env: str = "GCS_ACCESS_TOKEN",
        client: Optional[GCSClient] = None,
    ) -> None:
        self.default_bucket = bucket
        self.default_prefix = prefix
        self.token_env = token_env
        self._client = client

    async def initialize(self) -> None:
        if self._client is None:
            token = os.getenv(self.token_env)
            if token:
                self._client = GCSClient(token=token)

    async def dispose(self) -> None:
        self._client = None

    def is_authenticated(self) -> bool:
        return self._client is not None

    def _require_client(self) -> GCSClient:
        if self._client is None:
            raise StorageAuthError(f"Not authenticated. Set {self.token_env} to a GCS access token.")
        return self._client

    def _resolve(self, identifier: FileIdentifier) -> FileIdentifier:
        return {
            "bucket": identifier.get("bucket") or self.default_bucket,
            "prefix": identifier.get("prefix") or self.default_prefix,
            "filename": identifier_filename(identifier),
        }

    def validate_identifier(self, identifier: FileIdentifier, operation: str) -> List[str]:
        resolved = self._resolve(identifier)
        missing = [key for key in ("bucket", "prefix") if not resolved.get(key)]
        if not resolved.get("filename"):
            missing.append("filename")
        return missing

    def _object(self, identifier: FileIdentifier, filename: str) -> tuple[str, str]:
        resolved = self._resolve(identifier)
        missing = [key for key in ("bucket", "prefix") if not resolved.get(key)]
        if missing:
            raise StorageError(f"{', '.join(missing)} required for GCS")
        return resolved["bucket"], f"{resolved['prefix']}/{filename}"

    async def _call(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except StorageAuthError:
            # token is dead; force a re-authentication
            self._client = None
            raise
        except requests.RequestException as exc:
            raise StorageError(f"GCS request failed: {exc}") from exc

    async def load_file(self, identifier: FileIdentifier) -> bytes:
        filename = identifier_filename(identifier)
        if not filename:
            raise StorageError("bucket, prefix, and filename are required for GCS load")
        bucket, name = self._object(identifier, filename)
        client = self._require_client()
        data = await self._call(client.download, bucket, name)
        console.print(f"[green]Loaded[/green] {filename} from gs://{bucket}")
        return data

    async def save_file(self, identifier: FileIdentifier, job: JobData) -> None:
        filename = identifier_filename(identifier)
        if not filename:
            raise PersistFailure("bucket, prefix, and filename are required for GCS save")
        bucket, name = self._object(identifier, companion_name(filename))
        client = self._require_client()
        payload = job.to_json_dict()
        payload["updatedAt"] = utc_now_iso()
        try:
            await self._call(client.upload_json, bucket, name, payload)
        except StorageError as exc:
            raise PersistFailure(str(exc)) from exc
        console.print(f"[green]Saved[/green] {len(job.tus)} changed unit(s) to gs://{bucket}/{name}")

    async def load_auto_save_data(self, identifier: FileIdentifier, name: str) -> Optional[JobData]:
        if not name.endswith(ARCHIVE_SUFFIX):
            return None
        bucket, object_name = self._object(identifier, companion_name(name))
        client = self._require_client()
        try:
            raw = await self._call(client.download, bucket, object_name)
        except GCSNotFound:
            console.print(f"[cyan]No saved translations found for {name}[/cyan] (normal for new files)")
            return None
        except StorageAuthError:
            raise
        except StorageError as exc:
            raise AutoSaveUnavailable(str(exc)) from exc
        try:
            return JobData.model_validate(json.loads(raw.decode("utf-8-sig")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise AutoSaveUnavailable(f"Unreadable companion {object_name}: {exc}") from exc

    async def list_files(self, location: Optional[str] = None) -> List[FileInfo]:
        if location:
            bucket, _, prefix = location.partition("/")
        else:
            bucket, prefix = self.default_bucket or "", self.default_prefix or ""
        if not bucket or not prefix:
            raise StorageError("Location (bucket/prefix) is required for listing GCS files")
        client = self._require_client()
        items = await self._call(client.list_objects, bucket, prefix)
        files: List[FileInfo] = []
        for item in items:
            full = item.get("name") or ""
            if not full.endswith(ARCHIVE_SUFFIX):
                continue
            name = full[len(prefix) + 1 :]
            size = item.get("size")
            files.append(
                FileInfo(
                    name=name,
                    size=int(size) if size is not None else None,
                    updated_at=item.get("updated"),
                    identifier={"bucket": bucket, "prefix": prefix, "filename": name},
                )
            )
        return files
