"""Merge multi-BIN cue sheets into a single BIN.

Tracks are concatenated byte for byte in FILE order; the rewritten sheet
keeps every TRACK and INDEX line as it was, so index offsets stay valid.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path

from .cuesheet import CueSheet, read_cue, render_merged_cue, write_cue
from .errors import MergeBlockedError
from .models import MergeOperation, TrackSource
from .naming import sanitize_filename
from .parser import parse_name

logger = logging.getLogger(__name__)

COPY_CHUNK = 1024 * 1024
TMP_SUFFIX = ".tmp"
TRACK_NUMBER_RE = re.compile(r"(\(\s*track\s*)(\d+)(\s*\))", re.IGNORECASE)


def resolve_track_path(sheet: CueSheet, reference: str) -> Path:
    """Resolve a FILE reference, tolerating '(Track 1)' vs '(Track 01)'."""
    path = sheet.resolve(reference)
    if path.is_file():
        return path
    m = TRACK_NUMBER_RE.search(path.name)
    if m:
        number = int(m.group(2))
        for digits in (f"{number:02d}", str(number)):
            candidate = path.with_name(
                path.name[: m.start(2)] + digits + path.name[m.end(2):]
            )
            if candidate.is_file():
                return candidate
    return path


def _orphan_directories(tracks: list[TrackSource], stop: Path) -> tuple[Path, ...]:
    folders = {
        t.path.parent
        for t in tracks
        if t.path.parent != stop and stop in t.path.parent.parents
    }
    return tuple(sorted(folders, key=lambda p: (-len(p.parts), str(p))))


def plan_merge(cue_path: Path, output_dir: Path | None = None) -> MergeOperation | None:
    """Plan one merge, or None when the sheet references fewer than two files."""
    sheet = read_cue(cue_path)
    if len(sheet.files) < 2:
        return None

    tracks: list[TrackSource] = []
    for index, entry in enumerate(sheet.files):
        path = resolve_track_path(sheet, entry.reference)
        exists = path.is_file()
        tracks.append(
            TrackSource(
                path=path,
                cue_reference=entry.reference,
                byte_length=path.stat().st_size if exists else 0,
                track_number=entry.first_track_number or index + 1,
                is_audio=entry.is_audio,
                exists=exists,
            )
        )

    dest_dir = output_dir or cue_path.parent
    base = sanitize_filename(cue_path.stem) or "merged"
    dest_bin = dest_dir / f"{base}.bin"
    dest_cue = dest_dir / f"{base}.cue"

    blocked: str | None = None
    missing = [t.path.name for t in tracks if not t.exists]
    if missing:
        blocked = f"missing track BIN(s): {', '.join(missing)}"
    elif any(os.path.normcase(t.path) == os.path.normcase(dest_bin) for t in tracks):
        blocked = f"merged BIN would overwrite a source track: {dest_bin.name}"

    notes = []
    parsed = parse_name(cue_path.stem)
    if parsed.disc_number is not None:
        notes.append(f"disc {parsed.disc_number} of a multi-disc set")

    return MergeOperation(
        cue_path=cue_path,
        title=parsed.title,
        tracks=tuple(tracks),
        destination_bin=dest_bin,
        destination_cue=dest_cue,
        orphan_directories=_orphan_directories(tracks, cue_path.parent),
        blocked_reason=blocked,
        notes=tuple(notes),
    )


def plan_merges(
    root: Path,
    recursive: bool = False,
    output_dir: Path | None = None,
) -> list[MergeOperation]:
    if not root.is_dir():
        raise FileNotFoundError(f"Scan root not found: {root}")
    pattern = "**/*" if recursive else "*"
    operations = []
    for cue in sorted(root.glob(pattern), key=lambda p: str(p).casefold()):
        if cue.suffix.lower() != ".cue" or not cue.is_file():
            continue
        try:
            op = plan_merge(cue, output_dir)
        except OSError as exc:
            logger.warning("Could not read cue sheet %s: %s", cue, exc)
            continue
        if op is None:
            continue
        if op.is_blocked:
            logger.debug("Merge of %s blocked: %s", cue.name, op.blocked_reason)
        operations.append(op)
    return operations


def _prune_directories(folders: tuple[Path, ...], stop: Path) -> list[Path]:
    """Remove empty folders, walking up until a non-empty one or ``stop``."""
    removed = []
    for folder in folders:
        current = folder
        while current != stop and stop in current.parents:
            if current.is_dir():
                if any(current.iterdir()):
                    break
                current.rmdir()
                removed.append(current)
            current = current.parent
    return removed


def merge_tracks(operation: MergeOperation, delete_sources: bool = False) -> Path:
    """Run one merge.

    Either the merged BIN and sheet are fully written or an exception
    propagates; a leftover .tmp file is overwritten on the next attempt.
    """
    if operation.is_blocked:
        raise MergeBlockedError(f"{operation.cue_path.name}: {operation.blocked_reason}")

    sheet = read_cue(operation.cue_path)
    operation.destination_bin.parent.mkdir(parents=True, exist_ok=True)

    expected = 0
    tmp_bin = operation.destination_bin.with_name(operation.destination_bin.name + TMP_SUFFIX)
    with open(tmp_bin, "wb") as out:
        for track in operation.tracks:
            with open(track.path, "rb") as src:
                shutil.copyfileobj(src, out, COPY_CHUNK)
            expected += track.path.stat().st_size
    written = tmp_bin.stat().st_size
    if written != expected:
        tmp_bin.unlink()
        raise OSError(f"merged size {written} does not match track total {expected}")
    os.replace(tmp_bin, operation.destination_bin)

    bin_ref = Path(
        os.path.relpath(operation.destination_bin, operation.destination_cue.parent)
    ).as_posix()
    tmp_cue = operation.destination_cue.with_name(operation.destination_cue.name + TMP_SUFFIX)
    write_cue(tmp_cue, render_merged_cue(sheet, bin_ref))
    os.replace(tmp_cue, operation.destination_cue)
    logger.info(
        "Merged %d track(s) of %s into %s (%d bytes)",
        len(operation.tracks),
        operation.cue_path.name,
        operation.destination_bin.name,
        written,
    )

    if delete_sources:
        remove_merge_sources(operation)
    return operation.destination_bin


def remove_merge_sources(operation: MergeOperation) -> list[str]:
    """Delete the track BINs and the old sheet of a finished merge.

    Returns one message per file or folder that could not be removed.
    """
    problems: list[str] = []
    paths = [t.path for t in operation.tracks]
    if os.path.normcase(operation.cue_path) != os.path.normcase(operation.destination_cue):
        paths.append(operation.cue_path)
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            msg = f"Could not delete source {path}: {exc}"
            logger.warning(msg)
            problems.append(msg)
    try:
        for folder in _prune_directories(operation.orphan_directories, operation.cue_path.parent):
            logger.info("Removed empty folder %s", folder)
    except OSError as exc:
        msg = f"Could not remove emptied folder: {exc}"
        logger.warning(msg)
        problems.append(msg)
    return problems


@dataclass
class MergeResult:
    dry_run: bool
    merged: int = 0
    failed: int = 0
    blocked: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


def execute_merges(
    operations: list[MergeOperation],
    dry_run: bool = True,
    delete_sources: bool = False,
    cancel_event: threading.Event | None = None,
) -> MergeResult:
    """Run merges one after another; cancellation is checked between merges."""
    result = MergeResult(dry_run=dry_run)
    for op in operations:
        if op.is_blocked:
            result.blocked += 1
            result.messages.append(f"BLOCKED {op.cue_path.name}: {op.blocked_reason}")
            continue
        if dry_run:
            result.merged += 1
            result.messages.append(
                f"Merge {len(op.tracks)} track(s) of {op.cue_path.name} -> {op.destination_bin.name}"
            )
            continue
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            break
        try:
            merge_tracks(op)
        except OSError as exc:
            msg = f"{op.cue_path.name}: {exc}"
            logger.error("Merge failed: %s", msg)
            result.failed += 1
            result.errors.append(msg)
            continue
        result.merged += 1
        if delete_sources:
            result.errors.extend(remove_merge_sources(op))
    return result
