from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class ConfigError(ValueError):
    pass


@dataclass
class ReviewConfig:
    raw: Dict[str, Any]

    def _storage(self) -> Dict[str, Any]:
        return self.raw.get("storage", {}) or {}

    @property
    def default_storage(self) -> str:
        return str(self._storage().get("default", "local"))

    @property
    def local_root(self) -> Path:
        return Path(str((self._storage().get("local", {}) or {}).get("root", ".")))

    @property
    def gcs_bucket(self) -> Optional[str]:
        return (self._storage().get("gcs", {}) or {}).get("bucket")

    @property
    def gcs_prefix(self) -> Optional[str]:
        return (self._storage().get("gcs", {}) or {}).get("prefix")

    @property
    def gcs_token_env(self) -> str:
        return str((self._storage().get("gcs", {}) or {}).get("token_env", "GCS_ACCESS_TOKEN"))


def load_config(path: Path) -> ReviewConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")
    storage = data.get("storage", {})
    if storage is not None and not isinstance(storage, dict):
        raise ConfigError("'storage' must be a mapping")
    return ReviewConfig(raw=data)
