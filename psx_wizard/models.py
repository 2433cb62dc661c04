"""Shared data types for disc descriptors, title groups and planned operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ContentType(str, Enum):
    MAINLINE = "mainline"
    CHEAT = "cheat"
    EDUCATIONAL = "educational"
    DEMO = "demo"


class DiscFormat(str, Enum):
    BIN_CUE = "bincue"
    CONTAINER = "chd"


class ContentMode(str, Enum):
    """How cheat and educational discs take part in grouping."""

    OMIT = "omit"
    STANDALONE = "standalone"
    AS_DISC = "as-disc"


class ConversionDirection(str, Enum):
    BIN_CUE_TO_CONTAINER = "to-chd"
    CONTAINER_TO_BIN_CUE = "to-cue"


class PlaylistOperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class CueOperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"


SPECIAL_CONTENT = (ContentType.CHEAT, ContentType.EDUCATIONAL)


# ---------------------------------------------------------------------------
# Discs and groups
# ---------------------------------------------------------------------------


@dataclass
class DiscDescriptor:
    """Everything parsed from one disc file (.cue, .chd or a raw .bin track)."""

    file_path: Path
    title: str
    format: DiscFormat
    region: str | None = None
    serial: str | None = None
    version: str | None = None
    disc_number: int | None = None
    disc_count: int | None = None
    track_number: int | None = None
    track_count: int | None = None
    is_audio_track: bool = False
    content_type: ContentType = ContentType.MAINLINE
    warnings: list[str] = field(default_factory=list)
    # Binary files referenced by the cue sheet, resolved against its directory.
    track_files: list[Path] = field(default_factory=list)
    missing_tracks: list[Path] = field(default_factory=list)
    # Cue sheet that owns a raw .bin track, when one was found.
    sheet_path: Path | None = None

    @property
    def extension(self) -> str:
        return self.file_path.suffix.lower()

    @property
    def is_sheet(self) -> bool:
        return self.extension == ".cue"

    @property
    def is_special(self) -> bool:
        return self.content_type in SPECIAL_CONTENT


@dataclass
class TitleGroup:
    """Discs that belong to one title, ordered by disc number."""

    canonical_title: str
    region: str | None
    discs: list[DiscDescriptor]
    version: str | None = None
    root_folder: Path | None = None
    playlist_path: Path | None = None
    is_multi_disc: bool = False

    @property
    def disc_numbers(self) -> list[int]:
        return sorted({d.disc_number for d in self.discs if d.disc_number is not None})

    @property
    def directory(self) -> Path:
        return self.discs[0].file_path.parent

    @property
    def serials(self) -> list[str]:
        seen: list[str] = []
        for disc in self.discs:
            if disc.serial and disc.serial not in seen:
                seen.append(disc.serial)
        return seen

    def discs_numbered(self, number: int) -> list[DiscDescriptor]:
        return [d for d in self.discs if d.disc_number == number]

    def has_format(self, fmt: DiscFormat) -> bool:
        return any(d.format is fmt for d in self.discs)


# ---------------------------------------------------------------------------
# Planned operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenameOperation:
    source: Path
    destination: Path
    description: str = ""


@dataclass(frozen=True)
class MoveFileOperation:
    source: Path
    destination: Path
    description: str = ""


@dataclass(frozen=True)
class DeleteFolderOperation:
    folder: Path
    description: str = ""


@dataclass(frozen=True)
class SheetReference:
    """One FILE line of a cue sheet whose target is being renamed."""

    old_reference: str
    new_reference: str
    old_path: Path
    new_path: Path


@dataclass(frozen=True)
class UpdateSheetOperation:
    """Rewrite FILE references inside a cue sheet after its tracks moved.

    ``sheet_path`` is where the sheet ends up; ``source`` is where it was
    found during planning, used when the sheet itself was not moved.
    """

    source: Path
    sheet_path: Path
    references: tuple[SheetReference, ...]
    description: str = ""


FileOperation = RenameOperation | MoveFileOperation | DeleteFolderOperation | UpdateSheetOperation


@dataclass(frozen=True)
class ConversionOperation:
    source: Path
    destination: Path
    direction: ConversionDirection
    expected_artifact: Path
    delete_source_after_success: bool = False
    associated_files_to_delete: tuple[Path, ...] = ()
    disc_number: int | None = None


@dataclass(frozen=True)
class PlaylistOperation:
    playlist_path: Path
    title: str
    region: str | None
    disc_filenames: tuple[str, ...]
    operation_type: PlaylistOperationType
    existing_content: str | None = None

    @property
    def content(self) -> str:
        return "".join(f"{name}\n" for name in self.disc_filenames)


@dataclass(frozen=True)
class CueOperation:
    """Write ``content`` to ``cue_path`` (a new sheet or a repaired one)."""

    operation_type: CueOperationType
    cue_path: Path
    content: str
    details: str = ""


@dataclass(frozen=True)
class TrackSource:
    path: Path
    cue_reference: str
    byte_length: int
    track_number: int
    is_audio: bool
    exists: bool = True


@dataclass(frozen=True)
class MergeOperation:
    cue_path: Path
    title: str
    tracks: tuple[TrackSource, ...]
    destination_bin: Path
    destination_cue: Path
    orphan_directories: tuple[Path, ...] = ()
    blocked_reason: str | None = None
    notes: tuple[str, ...] = ()

    @property
    def is_blocked(self) -> bool:
        return self.blocked_reason is not None

    @property
    def total_bytes(self) -> int:
        return sum(t.byte_length for t in self.tracks)
