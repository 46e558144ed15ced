from __future__ import annotations

import argparse
import asyncio
import sys
from collections import Counter
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .archive.loader import InvalidArchive, load_job_archive
from .config import ConfigError, ReviewConfig, load_config
from .session import ReviewSession
from .storage.base import FileIdentifier, StorageError, StoragePlugin
from .storage.gcs import GCSPlugin, build_path, parse_path
from .storage.local import LocalFilePlugin
from .storage.registry import PluginRegistry
from .text import normalized_to_display_string_for_target, normalized_to_string

load_dotenv()  # automatically load variables from .env if present
console = Console()

DEFAULT_CONFIG = "lqa.yml"


def _load_config_or_exit(config_path: Path, explicit: bool) -> ReviewConfig:
    if not explicit and not config_path.exists():
        return ReviewConfig(raw={})
    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(2)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {escape(str(e))}")
        sys.exit(2)


def build_registry(cfg: ReviewConfig) -> PluginRegistry:
    registry = PluginRegistry()
    registry.register(LocalFilePlugin(cfg.local_root))
    registry.register(GCSPlugin(bucket=cfg.gcs_bucket, prefix=cfg.gcs_prefix, token_env=cfg.gcs_token_env))
    return registry


def _config_from_args(args: argparse.Namespace) -> ReviewConfig:
    explicit = args.config is not None
    return _load_config_or_exit(Path(args.config or DEFAULT_CONFIG), explicit)


def _resolve_target(
    registry: PluginRegistry, cfg: ReviewConfig, target: str, storage: Optional[str]
) -> Tuple[StoragePlugin, FileIdentifier]:
    """
    A "/gcs/<bucket>/<prefix>/<file>" deep link selects GCS; anything else is
    a filename for the chosen (or configured default) backend.
    """
    ident = parse_path(target) if target.startswith("/gcs/") else None
    if ident is not None:
        plugin_id = "gcs"
    else:
        plugin_id = storage or cfg.default_storage
        ident = {"filename": target}
    plugin = registry.get(plugin_id)
    if plugin is None:
        raise StorageError(f"Unknown storage backend: {plugin_id}")
    return plugin, ident


def cmd_inspect(args: argparse.Namespace) -> int:
    path = Path(args.archive)
    try:
        result = load_job_archive(path, extract_images=False)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 2
    except InvalidArchive as e:
        console.print(f"[red]Invalid archive:[/red] {escape(str(e))}")
        return 1

    job = result.job_data
    pending = [tu.guid for tu in job.tus if tu.candidates]
    console.print(f"[bold]File:[/bold] {result.file_name}")
    console.print(f"[bold]Job:[/bold] {job.job_guid or '-'} ({job.source_lang or '?'} -> {job.target_lang or '?'})")
    console.print(f"[bold]Units:[/bold] {len(job.tus)}")
    console.print(f"[bold]Duplicate guids:[/bold] {len(result.duplicate_guids)}")
    console.print(f"[bold]Awaiting candidate pick:[/bold] {len(pending)}")
    for guid in pending:
        tu = next(t for t in job.tus if t.guid == guid)
        console.print(f"  [cyan]{guid}[/cyan] {escape(normalized_to_string(tu.nsrc))}")
        for i, cand in enumerate(tu.candidates or []):
            console.print(f"    {i}: {escape(normalized_to_display_string_for_target(cand))}")
    linked = result.flow_data.guids_by_page() if result.flow_data else {}
    console.print(f"[bold]Pages:[/bold] {len(linked)}")
    for page_id, guids in linked.items():
        console.print(f"  {escape(page_id)}: {len(guids)} linked segment(s)")
    if result.quality_model is not None:
        qm = result.quality_model
        console.print(f"[bold]Quality model:[/bold] {qm.name} ({len(qm.error_categories)} categories)")
    return 0


async def _list(registry: PluginRegistry, plugin_id: str, location: Optional[str]) -> int:
    await registry.initialize_all()
    try:
        plugin = registry.get(plugin_id)
        if plugin is None:
            console.print(f"[red]Unknown storage backend:[/red] {plugin_id}")
            return 2
        if not plugin.capabilities.can_list:
            console.print(f"[red]{plugin.metadata.name} cannot list files[/red]")
            return 1
        try:
            files = await plugin.list_files(location)
        except StorageError as e:
            console.print(f"[red]List failed:[/red] {escape(str(e))}")
            return 1
        table = Table(title=f"{plugin.metadata.name}: {len(files)} file(s)")
        table.add_column("Name")
        table.add_column("Size", justify="right")
        table.add_column("Updated")
        for f in files:
            table.add_row(f.name, str(f.size) if f.size is not None else "-", f.updated_at or "-")
        console.print(table)
        return 0
    finally:
        await registry.dispose_all()


def cmd_list(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args)
    registry = build_registry(cfg)
    return asyncio.run(_list(registry, args.storage or cfg.default_storage, args.location))


async def _status(registry: PluginRegistry, cfg: ReviewConfig, target: str, storage: Optional[str]) -> int:
    await registry.initialize_all()
    session = ReviewSession()
    try:
        plugin, ident = _resolve_target(registry, cfg, target, storage)
        outcome = await session.load(plugin, ident)
        if outcome is None:
            return 1

        job = session.state.job_data
        states = Counter(session.state.segment_state(tu.guid).value for tu in job.tus)
        console.print(f"[bold]Status:[/bold] {session.file_status.value}")
        if plugin.metadata.id == "gcs":
            console.print(f"[bold]Link:[/bold] {build_path(session.identifier)}")
        console.print(f"[bold]Units:[/bold] {len(job.tus)}")
        console.print(
            f"[bold]Segments:[/bold] original={states.get('original', 0)} "
            f"saved={states.get('saved', 0)} modified={states.get('modified', 0)}"
        )
        console.print(f"[bold]Awaiting candidate pick:[/bold] {len(session.state.pending_candidates())}")
        stats = session.ept_statistics()
        if stats is not None:
            console.print(
                f"[bold]EPT:[/bold] {stats.ept:.1f} "
                f"({stats.changed_segments}/{stats.total_segments} segments, "
                f"{stats.changed_words}/{stats.total_words} words)"
            )
        qa = session.qa_summary()
        if qa is not None:
            console.print(f"[bold]QA errors:[/bold] {qa.total_errors} (weight {qa.total_weight:g})")
            for sev_id, count in sorted(qa.severity_breakdown.items()):
                console.print(f"  severity {escape(sev_id)}: {count}")
            for cat_key, count in sorted(qa.category_breakdown.items()):
                console.print(f"  category {escape(cat_key)}: {count}")
            if qa.unassessed_severity or qa.unassessed_category:
                console.print(
                    f"  [yellow]unassessed:[/yellow] severity={qa.unassessed_severity} "
                    f"category={qa.unassessed_category}"
                )
        return 0
    except StorageError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 2
    finally:
        session.close()
        await registry.dispose_all()


def cmd_status(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args)
    registry = build_registry(cfg)
    return asyncio.run(_status(registry, cfg, args.target, args.storage))


async def _pick(
    registry: PluginRegistry, cfg: ReviewConfig, target: str, storage: Optional[str], guid: str, index: int
) -> int:
    await registry.initialize_all()
    session = ReviewSession()
    try:
        plugin, ident = _resolve_target(registry, cfg, target, storage)
        if await session.load(plugin, ident) is None:
            return 1
        if not session.select_candidate(guid, index):
            console.print(f"[red]No candidate {index} for unit[/red] {guid}")
            return 2
        return 0 if await session.save() else 1
    except StorageError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 2
    finally:
        session.close()
        await registry.dispose_all()


def cmd_pick(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args)
    registry = build_registry(cfg)
    return asyncio.run(_pick(registry, cfg, args.target, args.storage, args.guid, args.index))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lqa",
        description="Review .lqaboss translation jobs.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # inspect
    p_inspect = sub.add_parser("inspect", help="Summarize an .lqaboss archive on disk")
    p_inspect.add_argument("archive", type=str, help="Path to the .lqaboss file")
    p_inspect.set_defaults(func=cmd_inspect)

    # list
    p_list = sub.add_parser("list", help="List archives in a storage backend")
    p_list.add_argument("--config", type=str, help=f"Path to config (default {DEFAULT_CONFIG})")
    p_list.add_argument("--storage", type=str, help="Backend id (local, gcs)")
    p_list.add_argument("--location", type=str, help="Sub-folder, or bucket/prefix for GCS")
    p_list.set_defaults(func=cmd_list)

    # status
    p_status = sub.add_parser("status", help="Load a job with its saved edits and report its state")
    p_status.add_argument("target", type=str, help="Filename, or /gcs/<bucket>/<prefix>/<file>.lqaboss")
    p_status.add_argument("--config", type=str, help=f"Path to config (default {DEFAULT_CONFIG})")
    p_status.add_argument("--storage", type=str, help="Backend id (local, gcs)")
    p_status.set_defaults(func=cmd_status)

    # pick
    p_pick = sub.add_parser("pick", help="Choose a candidate translation for a unit and save")
    p_pick.add_argument("target", type=str, help="Filename, or /gcs/<bucket>/<prefix>/<file>.lqaboss")
    p_pick.add_argument("--guid", type=str, required=True, help="Unit guid")
    p_pick.add_argument("--index", type=int, required=True, help="Candidate index (see `lqa inspect`)")
    p_pick.add_argument("--config", type=str, help=f"Path to config (default {DEFAULT_CONFIG})")
    p_pick.add_argument("--storage", type=str, help="Backend id (local, gcs)")
    p_pick.set_defaults(func=cmd_pick)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
