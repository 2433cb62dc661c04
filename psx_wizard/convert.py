"""BIN/CUE <-> CHD conversion planning and execution."""

from __future__ import annotations

import glob
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from .chdman import ChdTool
from .errors import ConversionCancelledError, ToolError
from .models import (
    ConversionDirection,
    ConversionOperation,
    DiscDescriptor,
    DiscFormat,
    PlaylistOperation,
    TitleGroup,
)
from .naming import NamingOptions, disc_filename, playlist_filename
from .playlist import (
    build_playlist_operation,
    missing_entries,
    read_playlist_entries,
    write_playlist,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
CONTAINER_EXT = ".chd"

SKIP_ALREADY_CONTAINER = "already in CHD format"
SKIP_BOTH_FORMATS = "prefer existing container: both BIN/CUE and CHD present"
SKIP_NO_SHEETS = "no BIN/CUE discs found"
SKIP_NO_CONTAINER_ONLY = "no CHD-only discs"
SKIP_ALL_BLOCKED = "every disc is missing BIN files"


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


@dataclass
class TitleConversionPlan:
    group: TitleGroup
    operations: list[ConversionOperation] = field(default_factory=list)
    playlist: PlaylistOperation | None = None
    stale_playlist: Path | None = None
    skip_reason: str | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


@dataclass
class ConvertPlan:
    direction: ConversionDirection
    titles: list[TitleConversionPlan] = field(default_factory=list)

    @property
    def operations(self) -> list[ConversionOperation]:
        return [op for t in self.titles for op in t.operations]

    @property
    def playlists(self) -> list[PlaylistOperation]:
        return [t.playlist for t in self.titles if t.playlist is not None]

    @property
    def skipped(self) -> list[TitleConversionPlan]:
        return [t for t in self.titles if t.skipped]


def _target_dir(group: TitleGroup, disc: DiscDescriptor, flatten: bool) -> Path:
    if flatten and group.root_folder is not None:
        return group.root_folder.parent
    return disc.file_path.parent


def _plan_to_container(
    group: TitleGroup,
    delete_source: bool,
    flatten: bool,
    options: NamingOptions,
    destinations: set[str],
) -> TitleConversionPlan:
    title_plan = TitleConversionPlan(group=group)
    sheets = [d for d in group.discs if d.format is DiscFormat.BIN_CUE and d.is_sheet]
    has_container = group.has_format(DiscFormat.CONTAINER)

    if not sheets:
        title_plan.skip_reason = SKIP_ALREADY_CONTAINER if has_container else SKIP_NO_SHEETS
        return title_plan
    if has_container:
        title_plan.skip_reason = SKIP_BOTH_FORMATS
        return title_plan

    blocked = 0
    for disc in sheets:
        if disc.missing_tracks:
            names = ", ".join(p.name for p in disc.missing_tracks)
            title_plan.notes.append(f"{disc.file_path.name}: missing BIN files: {names}")
            blocked += 1
            continue
        dest = _target_dir(group, disc, flatten) / disc_filename(group, disc, CONTAINER_EXT, options)
        key = str(dest).casefold()
        if key in destinations:
            title_plan.notes.append(f"{disc.file_path.name}: duplicate destination {dest.name}")
            continue
        if dest.exists():
            title_plan.notes.append(f"{disc.file_path.name}: destination already exists: {dest.name}")
            continue
        destinations.add(key)
        title_plan.operations.append(
            ConversionOperation(
                source=disc.file_path,
                destination=dest,
                direction=ConversionDirection.BIN_CUE_TO_CONTAINER,
                expected_artifact=dest,
                delete_source_after_success=delete_source,
                associated_files_to_delete=tuple(p for p in disc.track_files if p.is_file()),
                disc_number=disc.disc_number,
            )
        )

    if blocked == len(sheets):
        title_plan.skip_reason = SKIP_ALL_BLOCKED
        return title_plan

    if group.is_multi_disc:
        if len(title_plan.operations) != len(group.disc_numbers):
            title_plan.notes.append("playlist not planned: not every disc will be converted")
        else:
            playlist_dir = title_plan.operations[0].destination.parent
            playlist_path = group.playlist_path
            if playlist_path is None or playlist_path.parent != playlist_dir:
                playlist_path = playlist_dir / playlist_filename(group, options)
            title_plan.playlist = build_playlist_operation(
                playlist_path,
                group.canonical_title,
                group.region,
                [op.destination.name for op in title_plan.operations],
            )
            # Flattened sets get a new playlist; the old one goes once its sheets are gone.
            if delete_source and group.playlist_path not in (None, playlist_path):
                title_plan.stale_playlist = group.playlist_path
    return title_plan


def _plan_to_sheet(
    group: TitleGroup,
    delete_source: bool,
    flatten: bool,
    destinations: set[str],
) -> TitleConversionPlan:
    title_plan = TitleConversionPlan(group=group)
    for disc in group.discs:
        if disc.format is not DiscFormat.CONTAINER:
            continue
        if any(d.format is DiscFormat.BIN_CUE for d in group.discs_numbered(disc.disc_number or 1)):
            title_plan.notes.append(f"{disc.file_path.name}: BIN/CUE already present")
            continue
        dest_dir = _target_dir(group, disc, flatten)
        cue = dest_dir / (disc.file_path.stem + ".cue")
        key = str(cue).casefold()
        if key in destinations or cue.exists():
            title_plan.notes.append(f"{disc.file_path.name}: {cue.name} already exists")
            continue
        destinations.add(key)
        title_plan.operations.append(
            ConversionOperation(
                source=disc.file_path,
                destination=dest_dir,
                direction=ConversionDirection.CONTAINER_TO_BIN_CUE,
                expected_artifact=cue,
                delete_source_after_success=delete_source,
                disc_number=disc.disc_number,
            )
        )
    if not title_plan.operations and not title_plan.notes:
        title_plan.skip_reason = SKIP_NO_CONTAINER_ONLY
    elif not title_plan.operations:
        title_plan.skip_reason = title_plan.notes[-1]
    return title_plan


def plan_conversions(
    groups: list[TitleGroup],
    direction: ConversionDirection,
    delete_source: bool = False,
    flatten: bool = False,
    options: NamingOptions = NamingOptions(),
) -> ConvertPlan:
    plan = ConvertPlan(direction=direction)
    destinations: set[str] = set()
    for group in groups:
        if direction is ConversionDirection.BIN_CUE_TO_CONTAINER:
            title_plan = _plan_to_container(group, delete_source, flatten, options, destinations)
        else:
            title_plan = _plan_to_sheet(group, delete_source, flatten, destinations)
        if title_plan.skip_reason:
            logger.debug("Skipping %s: %s", group.canonical_title, title_plan.skip_reason)
        plan.titles.append(title_plan)
    return plan


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass
class ConvertResult:
    dry_run: bool
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    sources_deleted: int = 0
    playlists_written: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


class ConvertExecutor:
    """Runs planned conversions through a ChdTool with a bounded worker pool."""

    def __init__(self, tool: ChdTool, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.tool = tool
        self.max_workers = max(1, max_workers)
        self._lock = threading.Lock()

    def execute(
        self,
        plan: ConvertPlan,
        dry_run: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> ConvertResult:
        result = ConvertResult(dry_run=dry_run)
        operations = plan.operations

        if dry_run:
            for op in operations:
                result.messages.append(
                    f"{op.direction.value}: {op.source.name} -> {op.expected_artifact}"
                )
            result.playlists_written = len(plan.playlists)
            return result

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self._run_one, op, result, cancel_event): op for op in operations}
            for future in as_completed(futures):
                op = futures[future]
                exc = future.exception()
                if exc is not None:
                    self._fail(result, f"{op.source.name}: unexpected error: {exc}")

        if result.cancelled:
            result.messages.append("Cancelled; playlists were not written")
            return result

        for title_plan in plan.titles:
            if title_plan.playlist is not None:
                self._write_playlist(title_plan.playlist, result, title_plan.stale_playlist)
        return result

    # -- workers --------------------------------------------------------------

    def _fail(self, result: ConvertResult, msg: str) -> None:
        logger.error(msg)
        with self._lock:
            result.failed += 1
            result.errors.append(msg)

    def _run_one(
        self,
        op: ConversionOperation,
        result: ConvertResult,
        cancel_event: threading.Event | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            with self._lock:
                result.skipped += 1
                result.cancelled = True
            return

        try:
            if op.direction is ConversionDirection.BIN_CUE_TO_CONTAINER:
                op.destination.parent.mkdir(parents=True, exist_ok=True)
                exit_code = self.tool.create_cd(op.source, op.destination, cancel_event)
            else:
                op.destination.mkdir(parents=True, exist_ok=True)
                exit_code = self.tool.extract_cd(op.source, op.expected_artifact, cancel_event)
        except ConversionCancelledError as exc:
            with self._lock:
                result.cancelled = True
            self._remove_partial(op)
            self._fail(result, f"{op.source.name}: {exc}")
            return
        except (ToolError, OSError) as exc:
            self._fail(result, f"{op.source.name}: {exc}")
            return

        if exit_code != 0:
            self._fail(result, f"{op.source.name}: chdman exited with code {exit_code}")
            return
        if not op.expected_artifact.exists():
            self._fail(result, f"{op.source.name}: expected output missing: {op.expected_artifact}")
            return

        logger.info("Converted %s -> %s", op.source.name, op.expected_artifact.name)
        with self._lock:
            result.succeeded += 1
        if op.delete_source_after_success:
            self._delete_sources(op, result)

    def _delete_sources(self, op: ConversionOperation, result: ConvertResult) -> None:
        for path in (op.source, *op.associated_files_to_delete):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                msg = f"Could not delete source {path}: {exc}"
                logger.warning(msg)
                with self._lock:
                    result.errors.append(msg)
                continue
            logger.info("Deleted source %s", path)
            with self._lock:
                result.sources_deleted += 1

    def _remove_partial(self, op: ConversionOperation) -> None:
        if op.direction is ConversionDirection.BIN_CUE_TO_CONTAINER:
            partial = [op.destination]
        else:
            stem = op.expected_artifact.stem
            partial = [op.expected_artifact, *op.destination.glob(f"{glob.escape(stem)}*.bin")]
        for path in partial:
            try:
                path.unlink()
                logger.info("Removed partial output %s", path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Could not remove partial output %s: %s", path, exc)

    def _write_playlist(
        self,
        playlist: PlaylistOperation,
        result: ConvertResult,
        stale: Path | None = None,
    ) -> None:
        missing = missing_entries(playlist)
        if missing:
            msg = f"Playlist {playlist.playlist_path.name} not written; missing: {', '.join(missing)}"
            logger.warning(msg)
            with self._lock:
                result.errors.append(msg)
            return
        try:
            write_playlist(playlist)
        except OSError as exc:
            self._fail(result, f"Failed to write playlist {playlist.playlist_path}: {exc}")
            return
        result.playlists_written += 1
        if stale is not None:
            self._remove_stale_playlist(stale, result)

    def _remove_stale_playlist(self, stale: Path, result: ConvertResult) -> None:
        """Drop a playlist left behind by flattening once none of its entries exist."""
        try:
            entries = read_playlist_entries(stale)
            if any((stale.parent / name).exists() for name in entries):
                result.messages.append(f"Kept {stale} (still lists existing files)")
                return
            stale.unlink()
        except OSError as exc:
            msg = f"Could not remove old playlist {stale}: {exc}"
            logger.warning(msg)
            result.errors.append(msg)
            return
        logger.info("Removed old playlist %s", stale)
        result.messages.append(f"Removed old playlist {stale}")

