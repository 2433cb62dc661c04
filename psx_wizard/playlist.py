"""Multi-disc .m3u playlist planning and writing."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .models import PlaylistOperation, PlaylistOperationType, TitleGroup
from .naming import NamingOptions, playlist_filename

logger = logging.getLogger(__name__)

EXTENSION_PRIORITY = (".chd", ".cue", ".bin")
BACKUP_SUFFIX = ".bak"


def parse_playlist_entries(text: str) -> list[str]:
    """Playlist entries, ignoring blank lines and '#' comments."""
    entries = []
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            entries.append(line)
    return entries


def read_playlist_entries(path: Path) -> list[str]:
    return parse_playlist_entries(path.read_text(encoding="utf-8-sig", errors="replace"))


def _relative_entry(target: Path, playlist_dir: Path) -> str:
    return Path(os.path.relpath(target, playlist_dir)).as_posix()


def missing_entries(operation: PlaylistOperation) -> list[str]:
    """Entries of ``operation`` that do not resolve to a file next to the playlist."""
    folder = operation.playlist_path.parent
    return [name for name in operation.disc_filenames if not (folder / name).exists()]


def build_playlist_operation(
    playlist_path: Path,
    title: str,
    region: str | None,
    disc_filenames: list[str],
    create_new: bool = True,
    update_existing: bool = True,
    existing_path: Path | None = None,
) -> PlaylistOperation | None:
    """Create/Update operation for ``playlist_path``, or None when nothing changes.

    ``existing_path`` is the playlist currently on disk when it will be moved
    to ``playlist_path`` before this operation is applied.
    """
    current = existing_path or playlist_path
    if current.exists():
        if not update_existing:
            return None
        existing = current.read_text(encoding="utf-8-sig", errors="replace")
        if parse_playlist_entries(existing) == list(disc_filenames):
            return None
        return PlaylistOperation(
            playlist_path=playlist_path,
            title=title,
            region=region,
            disc_filenames=tuple(disc_filenames),
            operation_type=PlaylistOperationType.UPDATE,
            existing_content=existing,
        )
    if not create_new:
        return None
    return PlaylistOperation(
        playlist_path=playlist_path,
        title=title,
        region=region,
        disc_filenames=tuple(disc_filenames),
        operation_type=PlaylistOperationType.CREATE,
    )


def choose_extension(group: TitleGroup, preferred: str | None = None) -> str | None:
    """Extension every disc of ``group`` is available in.

    The caller's preference wins when it covers all discs, then container
    over sheet over raw binary.
    """
    candidates = list(EXTENSION_PRIORITY)
    if preferred:
        pref = preferred.lower() if preferred.startswith(".") else f".{preferred.lower()}"
        candidates.insert(0, pref)
    for ext in candidates:
        if all(any(d.extension == ext for d in group.discs_numbered(n)) for n in group.disc_numbers):
            return ext
    return None


def group_entries(
    group: TitleGroup,
    playlist_dir: Path,
    extension: str,
    locations: dict[Path, Path] | None = None,
) -> list[str]:
    """One entry per disc number, relative to ``playlist_dir``.

    ``locations`` maps a disc's current path to where it will live once
    pending renames or moves have run.
    """
    locations = locations or {}
    entries = []
    for number in group.disc_numbers:
        disc = next(d for d in group.discs_numbered(number) if d.extension == extension)
        target = locations.get(disc.file_path, disc.file_path)
        entries.append(_relative_entry(target, playlist_dir))
    return entries


def plan_group_playlist(
    group: TitleGroup,
    preferred_extension: str | None = None,
    options: NamingOptions = NamingOptions(),
    create_new: bool = True,
    update_existing: bool = True,
) -> PlaylistOperation | None:
    if not group.is_multi_disc:
        return None
    ext = choose_extension(group, preferred_extension)
    if ext is None:
        logger.debug("No common disc format for %s; skipping playlist", group.canonical_title)
        return None

    if group.playlist_path is not None:
        playlist_path = group.playlist_path
    else:
        playlist_path = group.directory / playlist_filename(group, options)

    entries = group_entries(group, playlist_path.parent, ext)
    if len(entries) < 2:
        return None

    return build_playlist_operation(
        playlist_path,
        group.canonical_title,
        group.region,
        entries,
        create_new=create_new,
        update_existing=update_existing,
    )


def plan_playlists(
    groups: list[TitleGroup],
    preferred_extension: str | None = None,
    options: NamingOptions = NamingOptions(),
    create_new: bool = True,
    update_existing: bool = True,
) -> list[PlaylistOperation]:
    operations = []
    for group in groups:
        op = plan_group_playlist(group, preferred_extension, options, create_new, update_existing)
        if op is not None:
            operations.append(op)
    return operations


def write_playlist(operation: PlaylistOperation, backup: bool = True) -> Path | None:
    """Write one playlist (UTF-8, no BOM, '\\n' line endings).

    For updates the previous file is first copied to '<name>.m3u.bak'
    (replacing an older backup). Returns the backup path, if any.
    """
    backup_path: Path | None = None
    path = operation.playlist_path
    if operation.operation_type is PlaylistOperationType.UPDATE and backup and path.exists():
        backup_path = path.with_name(path.name + BACKUP_SUFFIX)
        shutil.copyfile(path, backup_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(operation.content)
    logger.info("%s playlist %s", operation.operation_type.value.capitalize(), path)
    return backup_path


@dataclass
class PlaylistResult:
    created: int = 0
    updated: int = 0
    backups: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def apply_playlists(
    operations: list[PlaylistOperation],
    dry_run: bool = True,
    backup: bool = True,
) -> PlaylistResult:
    result = PlaylistResult()
    for op in operations:
        if dry_run:
            if op.operation_type is PlaylistOperationType.CREATE:
                result.created += 1
            else:
                result.updated += 1
            continue
        try:
            backup_path = write_playlist(op, backup=backup)
        except OSError as exc:
            msg = f"Failed to write playlist {op.playlist_path}: {exc}"
            logger.error(msg)
            result.errors.append(msg)
            continue
        if backup_path is not None:
            result.backups.append(backup_path)
        if op.operation_type is PlaylistOperationType.CREATE:
            result.created += 1
        else:
            result.updated += 1
    return result

