"""
psx-wizard command line.

Usage:
    psx-wizard scan ROOT [-r]
    psx-wizard rename ROOT [-r] [--flatten] [--playlists create|update|off] [--apply]
    psx-wizard convert ROOT [-r] [--to chd|cue] [--delete-source] [--apply]
    psx-wizard merge ROOT [-r] [--output-dir DIR] [--delete-source] [--apply]
    psx-wizard playlist ROOT [-r] [--extension .chd] [--apply]
    psx-wizard cue ROOT [-r] [--create] [--update] [--force] [--apply]

Everything runs as a dry run unless --apply is given.
"""

from __future__ import annotations

import argparse
import os
import shutil
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .chdman import ChdmanTool
from .config import AppCfg, default_config, load_config
from .convert import ConvertExecutor, plan_conversions
from .cue import apply_cue_operations, plan_cue_sheets
from .errors import PsxWizardError
from .grouper import GroupingResult, scan_and_group
from .logs import console, error, log, setup_logging, warn
from .merge import execute_merges, plan_merges
from .models import (
    ContentMode,
    ConversionDirection,
    DeleteFolderOperation,
    MoveFileOperation,
    RenameOperation,
    UpdateSheetOperation,
)
from .naming import NamingOptions
from .playlist import apply_playlists, plan_playlists
from .rename import execute_renames, plan_renames

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2


# ----------------------------
# Arguments
# ----------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("root", help="Folder containing disc images")
    common.add_argument("-r", "--recursive", action="store_true", help="Scan subfolders too")
    common.add_argument("--config", help="Path to config.yaml")
    common.add_argument(
        "--content-mode",
        choices=[m.value for m in ContentMode],
        help="How cheat/educational discs are handled (default: from config)",
    )
    common.add_argument("--apply", action="store_true", help="Perform changes (default: dry run)")
    common.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    common.add_argument("--restore-articles", action="store_true", help="'Title, The' -> 'The Title'")
    common.add_argument(
        "--keep-language-tags", action="store_true", help="Keep '(En,Fr,De)' style tags in names"
    )

    ap = argparse.ArgumentParser(prog="psx-wizard", description="PSX disc library organizer")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", parents=[common], help="Show how discs are grouped")

    p = sub.add_parser("rename", parents=[common], help="Rename discs to canonical names")
    p.add_argument("--flatten", action="store_true", help="Move titles out of per-game folders")
    p.add_argument(
        "--playlists",
        choices=["create", "update", "off"],
        default="create",
        help="Playlist handling after renames (default: create)",
    )

    p = sub.add_parser("convert", parents=[common], help="Convert between BIN/CUE and CHD")
    p.add_argument("--to", choices=["chd", "cue"], default="chd", help="Target format (default: chd)")
    p.add_argument("--delete-source", action="store_true", help="Delete sources after success")
    p.add_argument("--flatten", action="store_true", help="Write output next to the per-game folder")
    p.add_argument("--chdman", help="chdman executable (default: from config / PATH)")
    p.add_argument("--workers", type=int, help="Parallel conversions")

    p = sub.add_parser("merge", parents=[common], help="Merge multi-BIN cue sheets")
    p.add_argument("--output-dir", help="Write merged files here instead of next to the cue")
    p.add_argument("--delete-source", action="store_true", help="Delete track BINs after merging")

    p = sub.add_parser("playlist", parents=[common], help="Create/update .m3u playlists")
    p.add_argument("--extension", help="Preferred playlist entry extension (e.g. .chd)")
    p.add_argument("--no-backup", action="store_true", help="Do not keep a .bak of updated playlists")
    p.add_argument("--no-create", action="store_true", help="Only update existing playlists")
    p.add_argument("--no-update", action="store_true", help="Only create missing playlists")

    p = sub.add_parser("cue", parents=[common], help="Create missing cue sheets, repair broken ones")
    p.add_argument("--create", action="store_true", help="Only create sheets for lone images")
    p.add_argument("--update", action="store_true", help="Only repair broken FILE references")
    p.add_argument("--force", action="store_true", help="Regenerate existing same-name sheets")

    return ap.parse_args(argv)


def resolve_chdman(name: str) -> str | None:
    """Resolve the chdman executable from an explicit path or PATH."""
    candidate = Path(name).expanduser()
    if candidate.is_file() and os.access(candidate, os.X_OK):
        return str(candidate)
    return shutil.which(name)


def _naming_options(cfg: AppCfg, args: argparse.Namespace) -> NamingOptions:
    options = cfg.naming
    if args.restore_articles:
        options = replace(options, restore_articles=True)
    if args.keep_language_tags:
        options = replace(options, strip_language_tags=False)
    return options


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """First Ctrl+C requests a cooperative stop; a second one aborts."""
    event = threading.Event()

    def _handler(signum, frame):
        if event.is_set():
            raise KeyboardInterrupt
        console.print("\n[warn]Stopping after the current operation (Ctrl+C again to abort)[/]")
        event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield event
    finally:
        signal.signal(signal.SIGINT, previous)


def _confirm(args: argparse.Namespace, what: str) -> bool:
    if not args.apply:
        return False
    if args.yes:
        return True
    return Confirm.ask(f"Apply {what}?", default=False)


def _render_result(title: str, rows: list[tuple[str, object]], errors: list[str]) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("key", style="k")
    table.add_column("val", style="v")
    for key, value in rows:
        table.add_row(key, str(value))
    console.print(Panel(table, title=title, border_style="accent", box=box.ROUNDED))
    for msg in errors:
        error(msg)


# ----------------------------
# Commands
# ----------------------------


def _scan(root: Path, args: argparse.Namespace, cfg: AppCfg) -> GroupingResult:
    mode = ContentMode(args.content_mode) if args.content_mode else cfg.content_mode
    return scan_and_group(root, recursive=args.recursive, content_mode=mode)


def cmd_scan(root: Path, args: argparse.Namespace, cfg: AppCfg) -> int:
    grouping = _scan(root, args, cfg)
    table = Table(title="Titles", box=box.SIMPLE_HEAVY)
    table.add_column("Title", style="path")
    table.add_column("Region")
    table.add_column("Discs", justify="right")
    table.add_column("Formats")
    table.add_column("Serials", style="dim")
    table.add_column("Multi")
    for group in grouping.groups:
        formats = sorted({d.extension for d in group.discs})
        table.add_row(
            escape(group.canonical_title),
            group.region or "-",
            str(len(group.disc_numbers)),
            " ".join(formats),
            ", ".join(group.serials) or "-",
            "[ok]yes[/]" if group.is_multi_disc else "no",
        )
    console.print(table)

    for group in grouping.groups:
        for disc in group.discs:
            for warning in disc.warnings:
                warn(f"{disc.file_path.name}: {warning}")
    for disc in grouping.omitted:
        log(f"Omitted {disc.file_path.name} ({disc.content_type.value})")
    for path in grouping.orphan_playlists:
        warn(f"Playlist not matched to any title: {path.name}")
    return EXIT_OK


def cmd_rename(root: Path, args: argparse.Namespace, cfg: AppCfg) -> int:
    grouping = _scan(root, args, cfg)
    plan = plan_renames(
        grouping.groups,
        _naming_options(cfg, args),
        flatten=args.flatten,
        create_playlists=args.playlists == "create",
        update_playlists=args.playlists != "off",
    )

    table = Table(title="Rename plan", box=box.SIMPLE_HEAVY)
    table.add_column("Op", style="accent")
    table.add_column("From", style="dim")
    table.add_column("To", style="path")
    for op in plan.operations:
        if isinstance(op, (RenameOperation, MoveFileOperation)):
            kind = "rename" if isinstance(op, RenameOperation) else "move"
            table.add_row(kind, escape(op.source.name), escape(str(op.destination)))
        elif isinstance(op, UpdateSheetOperation):
            table.add_row("sheet", escape(op.source.name), escape(op.sheet_path.name))
        elif isinstance(op, DeleteFolderOperation):
            table.add_row("rmdir", escape(str(op.folder)), "")
    for playlist in plan.playlists:
        table.add_row(
            f"m3u {playlist.operation_type.value}",
            f"{len(playlist.disc_filenames)} disc(s)",
            escape(str(playlist.playlist_path)),
        )
    console.print(table)
    for conflict in plan.conflicts:
        warn(conflict)

    if plan.is_empty:
        log("Nothing to rename.")
        return EXIT_OK

    apply = _confirm(args, f"{len(plan.operations) + len(plan.playlists)} operation(s)")
    with cancel_on_interrupt() as cancel:
        result = execute_renames(
            plan, dry_run=not apply, cancel_event=cancel, playlist_backup=cfg.playlist.backup
        )

    _render_result(
        "Rename (dry run)" if result.dry_run else "Rename",
        [
            ("Renamed", result.renamed),
            ("Moved", result.moved),
            ("Sheets updated", result.sheets_updated),
            ("Folders removed", result.folders_deleted),
            ("Playlists", result.playlists_written),
            ("Skipped", result.skipped),
            ("Conflicts", len(result.conflicts)),
            ("Failed", result.failed),
        ],
        result.errors,
    )
    return EXIT_OK if result.success else EXIT_FAILURES


def cmd_convert(root: Path, args: argparse.Namespace, cfg: AppCfg) -> int:
    if args.to == "chd":
        direction = ConversionDirection.BIN_CUE_TO_CONTAINER
    else:
        direction = ConversionDirection.CONTAINER_TO_BIN_CUE
    grouping = _scan(root, args, cfg)
    plan = plan_conversions(
        grouping.groups,
        direction,
        delete_source=args.delete_source,
        flatten=args.flatten,
        options=_naming_options(cfg, args),
    )

    table = Table(title="Conversion plan", box=box.SIMPLE_HEAVY)
    table.add_column("Title", style="path")
    table.add_column("Source", style="dim")
    table.add_column("Output")
    for title_plan in plan.titles:
        name = escape(title_plan.group.canonical_title)
        if title_plan.skipped:
            table.add_row(name, "", f"[dim]skipped: {escape(title_plan.skip_reason or '')}[/]")
            continue
        for op in title_plan.operations:
            table.add_row(name, escape(op.source.name), escape(op.expected_artifact.name))
        if title_plan.playlist is not None:
            table.add_row(name, "", f"[info]{escape(title_plan.playlist.playlist_path.name)}[/]")
        for note in title_plan.notes:
            warn(f"{title_plan.group.canonical_title}: {note}")
    console.print(table)

    if not plan.operations:
        log("Nothing to convert.")
        return EXIT_OK

    chdman_name = args.chdman or cfg.chdman
    executable = resolve_chdman(chdman_name)
    if executable is None:
        error(f"chdman not found: {chdman_name}")
        return EXIT_USAGE

    apply = _confirm(args, f"{len(plan.operations)} conversion(s)")
    executor = ConvertExecutor(ChdmanTool(executable), max_workers=args.workers or cfg.max_workers)
    with cancel_on_interrupt() as cancel:
        result = executor.execute(plan, dry_run=not apply, cancel_event=cancel)

    done = len(plan.operations) if result.dry_run else result.succeeded
    _render_result(
        "Convert (dry run)" if result.dry_run else "Convert",
        [
            ("Planned" if result.dry_run else "Converted", done),
            ("Failed", result.failed),
            ("Sources deleted", result.sources_deleted),
            ("Playlists", result.playlists_written),
            ("Cancelled", result.cancelled),
        ],
        result.errors,
    )
    return EXIT_OK if result.success else EXIT_FAILURES


def cmd_merge(root: Path, args: argparse.Namespace, cfg: AppCfg) -> int:
    output_dir = Path(args.output_dir).expanduser() if args.output_dir else None
    operations = plan_merges(root, recursive=args.recursive, output_dir=output_dir)

    table = Table(title="Merge plan", box=box.SIMPLE_HEAVY)
    table.add_column("Cue", style="path")
    table.add_column("Tracks", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Output")
    for op in operations:
        if op.blocked_reason:
            output = f"[err]blocked: {escape(op.blocked_reason)}[/]"
        else:
            output = escape(op.destination_bin.name)
        table.add_row(escape(op.cue_path.name), str(len(op.tracks)), f"{op.total_bytes:,}", output)
    console.print(table)

    if not operations:
        log("No multi-BIN cue sheets found.")
        return EXIT_OK

    apply = _confirm(args, f"{len(operations)} merge(s)")
    with cancel_on_interrupt() as cancel:
        result = execute_merges(
            operations, dry_run=not apply, delete_sources=args.delete_source, cancel_event=cancel
        )

    _render_result(
        "Merge (dry run)" if result.dry_run else "Merge",
        [("Merged", result.merged), ("Blocked", result.blocked), ("Failed", result.failed)],
        result.errors,
    )
    return EXIT_OK if result.success else EXIT_FAILURES


def cmd_playlist(root: Path, args: argparse.Namespace, cfg: AppCfg) -> int:
    grouping = _scan(root, args, cfg)
    operations = plan_playlists(
        grouping.groups,
        preferred_extension=args.extension or cfg.playlist.extension,
        options=_naming_options(cfg, args),
        create_new=not args.no_create,
        update_existing=not args.no_update,
    )

    table = Table(title="Playlists", box=box.SIMPLE_HEAVY)
    table.add_column("Op", style="accent")
    table.add_column("Playlist", style="path")
    table.add_column("Entries")
    for op in operations:
        entries = escape("\n".join(op.disc_filenames))
        table.add_row(op.operation_type.value, escape(op.playlist_path.name), entries)
    console.print(table)

    if not operations:
        log("Playlists are up to date.")
        return EXIT_OK

    apply = _confirm(args, f"{len(operations)} playlist change(s)")
    backup = cfg.playlist.backup and not args.no_backup
    result = apply_playlists(operations, dry_run=not apply, backup=backup)
    _render_result(
        "Playlists (dry run)" if not apply else "Playlists",
        [("Created", result.created), ("Updated", result.updated), ("Backups", len(result.backups))],
        result.errors,
    )
    return EXIT_OK if result.success else EXIT_FAILURES


def cmd_cue(root: Path, args: argparse.Namespace, cfg: AppCfg) -> int:
    # Neither flag given means both.
    create = args.create or not args.update
    update = args.update or not args.create
    plan = plan_cue_sheets(
        root, recursive=args.recursive, create=create, update=update, force=args.force
    )

    table = Table(title="Cue sheets", box=box.SIMPLE_HEAVY)
    table.add_column("Op", style="accent")
    table.add_column("Cue", style="path")
    table.add_column("Details")
    for op in plan.operations:
        table.add_row(op.operation_type.value, escape(op.cue_path.name), escape(op.details))
    console.print(table)
    for note in plan.notes:
        warn(note)

    if plan.is_empty:
        log("No cue sheet issues found.")
        return EXIT_OK

    apply = _confirm(args, f"{len(plan.operations)} cue sheet change(s)")
    result = apply_cue_operations(plan.operations, dry_run=not apply)
    _render_result(
        "Cue sheets (dry run)" if result.dry_run else "Cue sheets",
        [("Created", result.created), ("Updated", result.updated), ("Failed", result.failed)],
        result.errors,
    )
    return EXIT_OK if result.success else EXIT_FAILURES


COMMANDS = {
    "scan": cmd_scan,
    "rename": cmd_rename,
    "convert": cmd_convert,
    "merge": cmd_merge,
    "playlist": cmd_playlist,
    "cue": cmd_cue,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config(Path(args.config).expanduser()) if args.config else default_config()
    except (FileNotFoundError, ValueError) as e:
        error(str(e))
        return EXIT_USAGE

    log_file = setup_logging(cfg.log_dir, verbose=args.verbose)
    if log_file is None:
        warn(f"Could not create log directory {cfg.log_dir}; continuing without a log file")

    root = Path(args.root).expanduser()
    console.rule(f"[title]psx-wizard {args.command}[/]")
    try:
        return COMMANDS[args.command](root, args, cfg)
    except (FileNotFoundError, NotADirectoryError) as e:
        error(str(e))
        return EXIT_USAGE
    except PsxWizardError as e:
        error(str(e))
        return EXIT_USAGE
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/]")
        return EXIT_FAILURES


if __name__ == "__main__":
    sys.exit(main())
