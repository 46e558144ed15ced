from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Dict, Iterator, Optional


class PageImageStore:
    """
    Page screenshots extracted from an archive onto disk.

    Handles are file paths keyed by the page's `imageFile` name. They stay
    valid until `release()`; a released store cannot be reused.
    """

    def __init__(self) -> None:
        self._tmp: Optional[TemporaryDirectory] = TemporaryDirectory(prefix="lqa-pages-")
        self._paths: Dict[str, Path] = {}

    @property
    def released(self) -> bool:
        return self._tmp is None

    def add(self, image_file: str, data: bytes) -> Path:
        if self._tmp is None:
            raise RuntimeError("page image store already released")
        safe = "".join(c if c.isalnum() or c in ("-", "_", ".") else "_" for c in image_file)
        path = Path(self._tmp.name) / f"{len(self._paths):04d}_{safe}"
        path.write_bytes(data)
        self._paths[image_file] = path
        return path

    def get(self, image_file: str) -> Optional[Path]:
        return self._paths.get(image_file)

    def __contains__(self, image_file: object) -> bool:
        return image_file in self._paths

    def __iter__(self) -> Iterator[str]:
        return iter(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def release(self) -> None:
        if self._tmp is None:
            return
        self._paths.clear()
        self._tmp.cleanup()
        self._tmp = None

    def __enter__(self) -> "PageImageStore":
        return self

    def __exit__(self, *exc) -> None:
        self.release()
