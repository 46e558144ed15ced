from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..schemas.job import JobData

FileIdentifier = Dict[str, Any]

ARCHIVE_SUFFIX = ".lqaboss"
COMPANION_SUFFIX = ".json"


class StorageError(RuntimeError):
    pass


class StorageAuthError(StorageError):
    pass


class AutoSaveUnavailable(StorageError):
    pass


class PersistFailure(StorageError):
    pass


class CapabilityUnsupported(StorageError):
    pass


@dataclass(frozen=True)
class Capabilities:
    requires_auth: bool
    can_save: bool
    can_load: bool = True
    can_list: bool = False
    can_auto_save: bool = False


@dataclass(frozen=True)
class PluginMetadata:
    id: str
    name: str
    description: str = ""
    version: str = "1.0.0"


@dataclass
class FileInfo:
    name: str
    size: Optional[int] = None
    updated_at: Optional[str] = None
    identifier: FileIdentifier = field(default_factory=dict)


def base_name(filename: str) -> str:
    """
    "job.lqaboss" -> "job"; companions share the archive's base name.
    """
    for suffix in (ARCHIVE_SUFFIX, COMPANION_SUFFIX):
        if filename.endswith(suffix):
            return filename[: -len(suffix)]
    return filename


def companion_name(filename: str) -> str:
    return base_name(filename) + COMPANION_SUFFIX


def identifier_filename(identifier: FileIdentifier) -> Optional[str]:
    return identifier.get("filename") or identifier.get("fileName")


class StoragePlugin(ABC):
    """
    Contract every persistence backend implements.

    Optional operations are advertised through `capabilities`; callers check
    the flags rather than probing for methods. Calls that a backend does not
    support raise CapabilityUnsupported.
    """

    metadata: PluginMetadata
    capabilities: Capabilities

    async def initialize(self) -> None:
        return None

    async def dispose(self) -> None:
        return None

    def is_authenticated(self) -> bool:
        return not self.capabilities.requires_auth

    def validate_identifier(self, identifier: FileIdentifier, operation: str) -> List[str]:
        """
        Return the identifier keys still missing for `operation` ("load"/"save").
        """
        return []

    @abstractmethod
    async def load_file(self, identifier: FileIdentifier) -> bytes:
        ...

    async def save_file(self, identifier: FileIdentifier, job: JobData) -> None:
        raise CapabilityUnsupported(f"{self.metadata.name} does not support saving")

    async def load_auto_save_data(self, identifier: FileIdentifier, name: str) -> Optional[JobData]:
        return None

    async def list_files(self, location: Optional[str] = None) -> List[FileInfo]:
        raise CapabilityUnsupported(f"{self.metadata.name} does not support listing files")
