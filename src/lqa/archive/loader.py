from __future__ import annotations

import io
import json
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from ..schemas.flow import FlowData
from ..schemas.job import JobData
from ..schemas.quality import QualityModel
from ..utils.json_utils import loads_bytes
from .candidates import resolve_units
from .images import PageImageStore

console = Console()

JOB_MEMBER = "job.json"
FLOW_MEMBER = "flow_metadata.json"
QUALITY_MEMBER = "quality.json"

# raised by zipfile for members with a bad CRC or a broken deflate stream
DAMAGED_MEMBER_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)

T = TypeVar("T")


class InvalidArchive(ValueError):
    pass


class OptionalMemberCorrupt(ValueError):
    pass


@dataclass
class LoadResult:
    job_data: JobData
    flow_data: Optional[FlowData] = None
    quality_model: Optional[QualityModel] = None
    page_images: Optional[PageImageStore] = None
    file_name: str = ""
    duplicate_guids: Dict[str, int] = field(default_factory=dict)

    def release(self) -> None:
        if self.page_images is not None:
            self.page_images.release()


def _read_source(source: bytes | str | Path) -> Tuple[bytes, str]:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source), ""
    p = Path(source)
    if not p.exists():
        raise FileNotFoundError(f"Archive not found: {p}")
    return p.read_bytes(), p.name


def _open_zip(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise InvalidArchive(f"Invalid .lqaboss file: not a zip archive ({exc})") from exc


def _read_member(zf: zipfile.ZipFile, name: str) -> Optional[bytes]:
    try:
        return zf.read(name)
    except KeyError:
        return None


def parse_job_data(raw: bytes) -> JobData:
    try:
        data = loads_bytes(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidArchive(f'Invalid .lqaboss file: "{JOB_MEMBER}" is not valid JSON ({exc})') from exc
    if not isinstance(data, dict) or not isinstance(data.get("tus"), list):
        raise InvalidArchive(f'Invalid .lqaboss file: "{JOB_MEMBER}" must be an object with a "tus" list')
    try:
        return JobData.model_validate(data)
    except ValidationError as exc:
        raise InvalidArchive(f'Invalid .lqaboss file: "{JOB_MEMBER}" failed validation: {exc}') from exc


def _decode_optional(raw: bytes, name: str) -> Dict[str, Any]:
    try:
        data = loads_bytes(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise OptionalMemberCorrupt(f"{name} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict) or not data:
        raise OptionalMemberCorrupt(f"{name} is empty or not an object")
    return data


def parse_flow_data(raw: bytes) -> Optional[FlowData]:
    data = _decode_optional(raw, FLOW_MEMBER)
    try:
        flow = FlowData.model_validate(data)
    except ValidationError as exc:
        raise OptionalMemberCorrupt(f"{FLOW_MEMBER} failed validation: {exc}") from exc
    if not flow.pages:
        console.print(f"[yellow]Warning:[/yellow] No valid pages data found in {FLOW_MEMBER}")
        return None
    return flow


def parse_quality_model(raw: bytes) -> Optional[QualityModel]:
    data = _decode_optional(raw, QUALITY_MEMBER)
    try:
        return QualityModel.model_validate(data)
    except ValidationError as exc:
        raise OptionalMemberCorrupt(f"{QUALITY_MEMBER} failed validation: {exc}") from exc


def _read_optional_member(zf: zipfile.ZipFile, name: str) -> Optional[bytes]:
    try:
        return _read_member(zf, name)
    except DAMAGED_MEMBER_ERRORS as exc:
        raise OptionalMemberCorrupt(f"{name} is damaged: {exc}") from exc


def _load_optional(zf: zipfile.ZipFile, name: str, parser: Callable[[bytes], Optional[T]]) -> Optional[T]:
    try:
        raw = _read_optional_member(zf, name)
        if raw is None:
            return None
        return parser(raw)
    except OptionalMemberCorrupt as exc:
        console.print(f"[yellow]Warning:[/yellow] Failed to parse {name}, ignoring it: {escape(str(exc))}")
        return None


def extract_page_images(zf: zipfile.ZipFile, flow: FlowData) -> PageImageStore:
    store = PageImageStore()
    try:
        for page in flow.pages:
            if page.image_file in store:
                continue
            try:
                data = _read_optional_member(zf, page.image_file)
            except OptionalMemberCorrupt as exc:
                console.print(f"[yellow]Warning:[/yellow] Skipping page image: {escape(str(exc))}")
                continue
            if data is None:
                console.print(f"[yellow]Warning:[/yellow] Page image missing from archive: {page.image_file}")
                continue
            store.add(page.image_file, data)
    except BaseException:
        store.release()
        raise
    return store


def load_job_archive(source: bytes | str | Path, extract_images: bool = True) -> LoadResult:
    """
    Unpack an .lqaboss archive into canonical job data.

    Only a missing or malformed job.json is fatal (InvalidArchive). Page
    metadata and the quality model are optional and dropped when unreadable.
    Duplicate guids are folded into candidate lists and empty targets are
    filled from the source text.
    """
    data, file_name = _read_source(source)
    with _open_zip(data) as zf:
        try:
            raw_job = _read_member(zf, JOB_MEMBER)
        except DAMAGED_MEMBER_ERRORS as exc:
            raise InvalidArchive(f'Invalid .lqaboss file: "{JOB_MEMBER}" is damaged ({exc})') from exc
        if raw_job is None:
            raise InvalidArchive(f'Invalid .lqaboss file: "{JOB_MEMBER}" not found.')
        job = parse_job_data(raw_job)

        units, dup_counts = resolve_units(job.tus)
        job = job.model_copy(update={"tus": units})

        flow = _load_optional(zf, FLOW_MEMBER, parse_flow_data)
        quality = _load_optional(zf, QUALITY_MEMBER, parse_quality_model)

        page_images = None
        if flow is not None and extract_images:
            page_images = extract_page_images(zf, flow)

    if dup_counts:
        console.print(
            f"[cyan]Folded duplicate guids:[/cyan] {len(dup_counts)} guid(s) now carry candidates or a merged target"
        )

    return LoadResult(
        job_data=job,
        flow_data=flow,
        quality_model=quality,
        page_images=page_images,
        file_name=file_name,
        duplicate_guids=dup_counts,
    )
