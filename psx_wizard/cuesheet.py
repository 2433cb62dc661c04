"""Cue sheet reading and writing.

Lines are kept verbatim (including their line endings) so that a sheet
can be written back with only the FILE lines touched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

FILE_RE = re.compile(
    r'^\s*FILE\s+(?:"(?P<quoted>[^"]*)"|(?P<bare>\S+))(?:\s+(?P<type>\S+))?\s*$',
    re.IGNORECASE,
)
TRACK_RE = re.compile(r"^\s*TRACK\s+(?P<number>\d+)\s+(?P<mode>\S+)", re.IGNORECASE)
INDEX_RE = re.compile(r"^\s*INDEX\s+(?P<number>\d+)\s+(?P<time>\d{1,3}:\d{2}:\d{2})\s*$", re.IGNORECASE)
REM_RE = re.compile(r"^\s*REM\b", re.IGNORECASE)

# Sheets are mostly ASCII; unknown bytes survive a read/write cycle untouched.
CUE_ENCODING = "utf-8-sig"
CUE_ERRORS = "surrogateescape"


@dataclass
class CueIndex:
    number: int
    time: str


@dataclass
class CueTrack:
    number: int
    mode: str
    indexes: list[CueIndex] = field(default_factory=list)

    @property
    def is_audio(self) -> bool:
        return self.mode.upper() == "AUDIO"


@dataclass
class CueFile:
    reference: str
    file_type: str
    tracks: list[CueTrack] = field(default_factory=list)

    @property
    def is_audio(self) -> bool:
        return bool(self.tracks) and all(t.is_audio for t in self.tracks)

    @property
    def first_track_number(self) -> int | None:
        return self.tracks[0].number if self.tracks else None


@dataclass
class CueSheet:
    path: Path | None
    files: list[CueFile]
    lines: list[str]

    @property
    def tracks(self) -> list[CueTrack]:
        return [t for f in self.files for t in f.tracks]

    @property
    def directory(self) -> Path:
        return self.path.parent if self.path is not None else Path(".")

    def resolve(self, reference: str) -> Path:
        """Path of a FILE reference relative to the sheet's directory."""
        return self.directory / reference.replace("\\", "/")

    def file_paths(self) -> list[Path]:
        return [self.resolve(f.reference) for f in self.files]

    def missing_files(self) -> list[Path]:
        return [p for p in self.file_paths() if not p.is_file()]


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n") or line.endswith("\r"):
        return line[-1]
    return ""


def parse_cue_text(text: str, path: Path | None = None) -> CueSheet:
    """Parse cue sheet text.

    REM comments and unknown commands are ignored (but kept in ``lines``).
    TRACK lines before any FILE line are dropped since they have no file to
    belong to.
    """
    lines = text.splitlines(keepends=True)
    files: list[CueFile] = []
    current_file: CueFile | None = None
    current_track: CueTrack | None = None

    for raw in lines:
        line = raw.strip()
        if not line or REM_RE.match(line):
            continue

        m = FILE_RE.match(line)
        if m:
            reference = m.group("quoted") if m.group("quoted") is not None else m.group("bare")
            current_file = CueFile(reference=reference, file_type=(m.group("type") or "BINARY").upper())
            files.append(current_file)
            current_track = None
            continue

        m = TRACK_RE.match(line)
        if m:
            if current_file is None:
                logger.debug("TRACK before FILE in %s: %s", path, line)
                continue
            current_track = CueTrack(number=int(m.group("number")), mode=m.group("mode").upper())
            current_file.tracks.append(current_track)
            continue

        m = INDEX_RE.match(line)
        if m and current_track is not None:
            current_track.indexes.append(CueIndex(number=int(m.group("number")), time=m.group("time")))

    return CueSheet(path=path, files=files, lines=lines)


def read_cue(path: Path) -> CueSheet:
    with open(path, encoding=CUE_ENCODING, errors=CUE_ERRORS, newline="") as f:
        text = f.read()
    return parse_cue_text(text, path)


def write_cue(path: Path, text: str) -> None:
    """Write sheet text exactly as given (no newline translation)."""
    with open(path, "w", encoding="utf-8", errors=CUE_ERRORS, newline="") as f:
        f.write(text)


def render_merged_cue(sheet: CueSheet, merged_bin_name: str) -> str:
    """Sheet text pointing every track at a single merged binary.

    The first FILE line is replaced and later FILE lines are dropped; TRACK,
    INDEX and every other line pass through byte for byte.
    """
    out: list[str] = []
    replaced = False
    for line in sheet.lines:
        if FILE_RE.match(line.strip()):
            if not replaced:
                ending = _line_ending(line) or "\n"
                out.append(f'FILE "{merged_bin_name}" BINARY{ending}')
                replaced = True
            continue
        out.append(line)
    return "".join(out)


def rewrite_references(sheet: CueSheet, renames: dict[str, str]) -> str:
    """Sheet text with FILE references renamed according to ``renames``.

    Matching is case-insensitive on the reference as written in the sheet.
    """
    lookup = {old.casefold(): new for old, new in renames.items()}
    out: list[str] = []
    for line in sheet.lines:
        m = FILE_RE.match(line.strip())
        if m:
            reference = m.group("quoted") if m.group("quoted") is not None else m.group("bare")
            new = lookup.get(reference.casefold())
            if new is not None:
                indent = line[: len(line) - len(line.lstrip())]
                file_type = m.group("type") or "BINARY"
                out.append(f'{indent}FILE "{new}" {file_type}{_line_ending(line)}')
                continue
        out.append(line)
    return "".join(out)


def render_single_track_cue(bin_name: str, mode: str = "MODE2/2352") -> str:
    """Minimal one-track sheet for a lone disc image."""
    return f'FILE "{bin_name}" BINARY\n  TRACK 01 {mode}\n    INDEX 01 00:00:00\n'
