"""Rename planning and safe execution.

plan_renames() maps every file of every TitleGroup to its canonical name;
execute_renames() applies a plan with per-operation conflict detection.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path

from .cuesheet import read_cue, rewrite_references, write_cue
from .models import (
    DeleteFolderOperation,
    DiscDescriptor,
    FileOperation,
    MoveFileOperation,
    PlaylistOperation,
    RenameOperation,
    SheetReference,
    TitleGroup,
    UpdateSheetOperation,
)
from .naming import NamingOptions, disc_filename, playlist_filename
from .playlist import (
    build_playlist_operation,
    choose_extension,
    group_entries,
    missing_entries,
    write_playlist,
)

logger = logging.getLogger(__name__)


def same_path(a: Path, b: Path) -> bool:
    """Case-insensitive path comparison."""
    return os.path.normpath(str(a)).casefold() == os.path.normpath(str(b)).casefold()


def _path_key(path: Path) -> str:
    return os.path.normpath(str(path)).casefold()


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass
class RenamePlan:
    operations: list[FileOperation] = field(default_factory=list)
    playlists: list[PlaylistOperation] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)

    @property
    def renames(self) -> int:
        return sum(isinstance(op, RenameOperation) for op in self.operations)

    @property
    def moves(self) -> int:
        return sum(isinstance(op, MoveFileOperation) for op in self.operations)

    @property
    def folder_deletions(self) -> int:
        return sum(isinstance(op, DeleteFolderOperation) for op in self.operations)

    @property
    def sheet_updates(self) -> int:
        return sum(isinstance(op, UpdateSheetOperation) for op in self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations and not self.playlists


class _PlanBuilder:
    """Collects file operations while keeping destinations unique."""

    def __init__(self) -> None:
        self.plan = RenamePlan()
        self.sources: set[str] = set()
        self.targets: dict[str, Path] = {}
        self.sheet_ops: list[UpdateSheetOperation] = []
        self.folders: list[Path] = []

    def add(self, source: Path, destination: Path) -> Path:
        """Queue source -> destination; returns where the file will end up."""
        if same_path(source, destination):
            return source
        key = _path_key(destination)
        if key in self.targets:
            self.plan.conflicts.append(
                f"duplicate target in plan: {destination.name} "
                f"(from {self.targets[key].name} and {source.name}); skipped {source.name}"
            )
            return source
        self.targets[key] = source
        self.sources.add(_path_key(source))
        if source.parent == destination.parent:
            op: FileOperation = RenameOperation(
                source, destination, f"Rename {source.name} -> {destination.name}"
            )
        else:
            op = MoveFileOperation(source, destination, f"Move {source.name} -> {destination}")
        self.plan.operations.append(op)
        return destination

    def finish(self) -> RenamePlan:
        for op in self.plan.operations:
            if isinstance(op, (RenameOperation, MoveFileOperation)) and op.destination.exists():
                if _path_key(op.destination) not in self.sources:
                    self.plan.conflicts.append(f"destination already exists: {op.destination}")
        self.plan.operations.extend(self.sheet_ops)
        for folder in self.folders:
            self.plan.operations.append(
                DeleteFolderOperation(folder, f"Remove emptied folder {folder}")
            )
        return self.plan


def _existing_tracks(disc: DiscDescriptor) -> list[tuple[int, Path]]:
    """(index, path) for the BIN files of a cue sheet that exist on disk."""
    tracks = []
    seen: set[str] = set()
    for index, path in enumerate(disc.track_files):
        key = _path_key(path)
        if key in seen or not path.is_file():
            continue
        seen.add(key)
        tracks.append((index, path))
    return tracks


def _reference(path: Path, sheet_dir: Path) -> str:
    return Path(os.path.relpath(path, sheet_dir)).as_posix()


def _plan_sheet(
    builder: _PlanBuilder,
    group: TitleGroup,
    disc: DiscDescriptor,
    target_dir: Path,
    options: NamingOptions,
) -> Path:
    """Queue the sheet and its tracks; returns where the sheet will end up."""
    cue_name = disc_filename(group, disc, disc.extension, options)
    cue_dest = builder.add(disc.file_path, target_dir / cue_name)

    try:
        sheet = read_cue(disc.file_path)
    except OSError as exc:
        builder.plan.conflicts.append(
            f"cue sheet unreadable, tracks not renamed: {disc.file_path.name} ({exc})"
        )
        return cue_dest

    tracks = _existing_tracks(disc)
    references = [f.reference for f in sheet.files]
    if not tracks:
        # Broken reference: pick up a lone BIN that shares the sheet's stem.
        fallback = disc.file_path.with_suffix(".bin")
        if len(references) == 1 and fallback.is_file():
            tracks = [(0, fallback)]
        else:
            return cue_dest

    multi_track = len(sheet.files) > 1
    sheet_refs: list[SheetReference] = []
    for index, path in tracks:
        track_number = None
        if multi_track:
            track_number = sheet.files[index].first_track_number or index + 1
        name = disc_filename(group, disc, ".bin", options, track_number=track_number)
        folder = target_dir if path.parent == disc.file_path.parent else path.parent
        dest = builder.add(path, folder / name)
        new_ref = _reference(dest, cue_dest.parent)
        if new_ref != references[index]:
            sheet_refs.append(SheetReference(references[index], new_ref, path, dest))

    if sheet_refs:
        builder.sheet_ops.append(
            UpdateSheetOperation(
                source=disc.file_path,
                sheet_path=cue_dest,
                references=tuple(sheet_refs),
                description=f"Update FILE references in {cue_dest.name}",
            )
        )
    return cue_dest


def _plan_playlist(
    builder: _PlanBuilder,
    group: TitleGroup,
    locations: dict[Path, Path],
    playlist_dir: Path,
    options: NamingOptions,
    create_new: bool,
    update_existing: bool,
) -> None:
    """Playlist for ``group`` as it will look once the renames have run."""
    if not group.is_multi_disc:
        return
    ext = choose_extension(group)
    if ext is None:
        return
    if group.playlist_path is not None:
        playlist_path = locations.get(group.playlist_path, group.playlist_path)
        if not same_path(playlist_path, group.playlist_path) and playlist_path.exists():
            builder.plan.conflicts.append(
                f"playlist not updated: {playlist_path.name} already exists"
            )
            return
    else:
        playlist_path = playlist_dir / playlist_filename(group, options)
    entries = group_entries(group, playlist_path.parent, ext, locations)
    if len(entries) < 2:
        return
    op = build_playlist_operation(
        playlist_path,
        group.canonical_title,
        group.region,
        entries,
        create_new=create_new,
        update_existing=update_existing,
        existing_path=group.playlist_path,
    )
    if op is not None:
        builder.plan.playlists.append(op)


def plan_renames(
    groups: list[TitleGroup],
    options: NamingOptions = NamingOptions(),
    flatten: bool = False,
    create_playlists: bool = True,
    update_playlists: bool = True,
) -> RenamePlan:
    """Plan canonical renames for ``groups``.

    With ``flatten`` a group that lives in its own folder is moved one level
    up and the folder is queued for deletion after all file operations.
    Playlists of multi-disc groups are planned against the renamed files.
    """
    builder = _PlanBuilder()
    for group in groups:
        root_folder = group.root_folder if flatten else None
        locations: dict[Path, Path] = {}
        for disc in group.discs:
            target_dir = root_folder.parent if root_folder else disc.file_path.parent
            if disc.is_sheet:
                locations[disc.file_path] = _plan_sheet(builder, group, disc, target_dir, options)
            else:
                name = disc_filename(
                    group, disc, disc.extension, options, track_number=disc.track_number
                )
                locations[disc.file_path] = builder.add(disc.file_path, target_dir / name)

        if root_folder is not None:
            playlist_dir = root_folder.parent
        elif group.playlist_path is not None:
            playlist_dir = group.playlist_path.parent
        else:
            playlist_dir = group.directory
        if group.playlist_path is not None:
            locations[group.playlist_path] = builder.add(
                group.playlist_path, playlist_dir / playlist_filename(group, options)
            )
        if create_playlists or update_playlists:
            _plan_playlist(
                builder, group, locations, playlist_dir, options, create_playlists, update_playlists
            )

        if root_folder is not None and root_folder not in builder.folders:
            builder.folders.append(root_folder)
        logger.debug("Planned renames for %s", group.canonical_title)
    return builder.finish()


# ---------------------------------------------------------------------------
# Execute
# ---------------------------------------------------------------------------


@dataclass
class RenameResult:
    dry_run: bool
    renamed: int = 0
    moved: int = 0
    sheets_updated: int = 0
    folders_deleted: int = 0
    playlists_written: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False
    conflicts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    backups: list[Path] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


def _apply_file_op(op: RenameOperation | MoveFileOperation, result: RenameResult) -> None:
    src, dst = op.source, op.destination
    if not src.exists():
        result.skipped += 1
        result.messages.append(f"SKIP {src.name} (source no longer exists)")
        return
    if dst.exists() and not same_path(src, dst):
        msg = f"{src.name} -> {dst} (destination exists)"
        result.conflicts.append(msg)
        result.skipped += 1
        logger.warning("Conflict: %s", msg)
        return
    dst.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(op, RenameOperation):
        src.rename(dst)
        result.renamed += 1
    else:
        shutil.move(str(src), str(dst))
        result.moved += 1
    logger.info("%s", op.description)


def _apply_sheet_op(op: UpdateSheetOperation, result: RenameResult) -> None:
    sheet_path = op.sheet_path if op.sheet_path.exists() else op.source
    if not sheet_path.exists():
        result.skipped += 1
        result.messages.append(f"SKIP {op.sheet_path.name} (cue sheet not found)")
        return
    # Only references whose BIN file really moved are rewritten.
    moved = [ref for ref in op.references if ref.new_path.exists() and not ref.old_path.exists()]
    if not moved:
        return
    renames = {ref.old_reference: _reference(ref.new_path, sheet_path.parent) for ref in moved}
    sheet = read_cue(sheet_path)
    write_cue(sheet_path, rewrite_references(sheet, renames))
    result.sheets_updated += 1
    logger.info("Updated %d FILE reference(s) in %s", len(renames), sheet_path.name)


def _apply_playlist_op(op: PlaylistOperation, result: RenameResult, backup: bool) -> None:
    missing = missing_entries(op)
    if missing:
        result.skipped += 1
        result.messages.append(
            f"SKIP playlist {op.playlist_path.name} (missing: {', '.join(missing)})"
        )
        logger.warning("Playlist %s not written; missing: %s", op.playlist_path.name, missing)
        return
    backup_path = write_playlist(op, backup=backup)
    if backup_path is not None:
        result.backups.append(backup_path)
    result.playlists_written += 1


def execute_renames(
    plan: RenamePlan,
    dry_run: bool = True,
    cancel_event: threading.Event | None = None,
    playlist_backup: bool = True,
) -> RenameResult:
    """Apply ``plan``.

    File operations run first, in plan order, followed by playlist writes;
    folder deletions run last and only remove folders that are empty at that
    moment. A failing operation is recorded and the rest of the plan continues.
    """
    result = RenameResult(dry_run=dry_run)
    result.conflicts.extend(plan.conflicts)
    file_ops = [op for op in plan.operations if not isinstance(op, DeleteFolderOperation)]
    folder_ops = [op for op in plan.operations if isinstance(op, DeleteFolderOperation)]

    if dry_run:
        result.renamed = plan.renames
        result.moved = plan.moves
        result.sheets_updated = plan.sheet_updates
        result.folders_deleted = plan.folder_deletions
        result.playlists_written = len(plan.playlists)
        result.messages.extend(op.description for op in file_ops)
        result.messages.extend(
            f"{op.operation_type.value.capitalize()} playlist {op.playlist_path.name}"
            for op in plan.playlists
        )
        result.messages.extend(f"{op.description} (if empty)" for op in folder_ops)
        return result

    for op in file_ops:
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            result.messages.append("Cancelled; remaining operations were not started")
            break
        try:
            if isinstance(op, UpdateSheetOperation):
                _apply_sheet_op(op, result)
            else:
                _apply_file_op(op, result)
        except OSError as exc:
            msg = f"{op.description}: {exc}"
            result.failed += 1
            result.errors.append(msg)
            logger.error("Rename failed: %s", msg)

    for playlist_op in plan.playlists:
        if result.cancelled:
            break
        try:
            _apply_playlist_op(playlist_op, result, playlist_backup)
        except OSError as exc:
            msg = f"Failed to write playlist {playlist_op.playlist_path}: {exc}"
            result.failed += 1
            result.errors.append(msg)
            logger.error(msg)

    for folder_op in folder_ops:
        if result.cancelled:
            break
        folder = folder_op.folder
        try:
            if not folder.is_dir():
                result.skipped += 1
                continue
            if any(folder.iterdir()):
                result.skipped += 1
                result.messages.append(f"Kept {folder} (not empty)")
                continue
            folder.rmdir()
            result.folders_deleted += 1
            logger.info("Removed empty folder %s", folder)
        except OSError as exc:
            msg = f"Failed to remove folder {folder}: {exc}"
            result.errors.append(msg)
            logger.error(msg)

    return result
