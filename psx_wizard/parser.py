"""Disc filename parsing and directory scanning.

parse_disc_name() turns one file into a DiscDescriptor; scan_directory()
enumerates a root folder and parses every disc file found in it.

Example:
    'Final Fantasy VIII (USA) [SLUS-00892/00908/00909/01080] (Disc 2 of 4).cue'
    -> title='Final Fantasy VIII', region='USA', serial='SLUS-00892',
       disc_number=2, disc_count=4
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from .classifier import DEFAULT_RULES, ContentRule, classify_content, is_lightspan_serial
from .cuesheet import CueFile, CueSheet, read_cue
from .models import ContentType, DiscDescriptor, DiscFormat

logger = logging.getLogger(__name__)

SHEET_EXT = ".cue"
CONTAINER_EXT = ".chd"
BINARY_EXT = ".bin"
PLAYLIST_EXT = ".m3u"
DISC_EXTS = {SHEET_EXT, CONTAINER_EXT, BINARY_EXT}

# ---------------------------------------------------------------------------
# Token patterns
# ---------------------------------------------------------------------------

DISC_RE = re.compile(
    r"\(\s*(?:disc|disk|cd|dvd)\s*(?P<number>\d+)(?:\s+of\s+(?P<count>\d+))?\s*\)",
    re.IGNORECASE,
)
# Legacy range form, e.g. "(Discs 1-3)"; carries no per-disc number.
DISC_RANGE_RE = re.compile(r"\(\s*discs?\s+\d+\s*(?:-|–|to)\s*\d+\s*\)", re.IGNORECASE)

SERIAL_PREFIXES = (
    "SLUS", "SCUS", "SLPS", "SCPS", "SLES", "SCES",
    "SLPM", "SCED", "SLED", "SCAJ", "SLKA", "SCKA", "PAPX",
)
SERIAL_RE = re.compile(
    r"\[\s*(?P<prefix>" + "|".join(SERIAL_PREFIXES) + r")[-_ ]?(?P<number>\d{5})"
    r"(?:\s*[/,]\s*[A-Z]{0,4}[-_]?\d{5})*\s*\]",
    re.IGNORECASE,
)
LIGHTSPAN_RE = re.compile(r"\[?\s*\bLSP[-_ ]?(?P<number>\d{5,6})\b\s*\]?", re.IGNORECASE)

VERSION_RE = re.compile(
    r"[\[(]\s*(?P<version>v\d+(?:\.\d+)*|rev\s*\d+(?:\.\d+)*)\s*[\])]",
    re.IGNORECASE,
)
TRACK_RE = re.compile(r"\(\s*track\s*(?P<number>\d+)\s*\)", re.IGNORECASE)
PAREN_RE = re.compile(r"\((?P<body>[^()]*)\)")

REGIONS = ("USA", "Europe", "Japan", "World", "Germany", "France", "Spain", "Italy", "Korea", "Asia")
REGION_ALIASES = {r.lower(): r for r in REGIONS}
REGION_ALIASES.update({"us": "USA", "eu": "Europe", "jp": "Japan"})

# SYSTEM.CNF boot line, e.g. "BOOT = cdrom:\SLUS_012.34;1"
BOOT_SERIAL_RE = re.compile(rb"([A-Z]{4})_(\d{3})\.(\d{2})")
PROBE_BYTES = 512 * 1024

WARN_NO_SERIAL = "serial not found"
WARN_CHEAT = "cheat/utility disc detected; serial not enforced"
WARN_LIGHTSPAN = "Lightspan educational disc detected"
WARN_EDUCATIONAL = "educational disc detected"
WARN_MISSING_BINS = "missing BIN files"
WARN_NO_SHEET = "no cue sheet found for BIN file"


def normalize_region(token: str) -> str | None:
    """Whitelisted region for a parenthesized token body, or None.

    Comma lists are accepted when every element is a known region:
    'USA, Europe' -> 'USA, Europe', 'us' -> 'USA'.
    """
    parts = [p.strip() for p in token.split(",")]
    if not parts or not all(parts):
        return None
    resolved = [REGION_ALIASES.get(p.lower()) for p in parts]
    if any(r is None for r in resolved):
        return None
    return ", ".join(r for r in resolved if r is not None)


def extract_region(text: str) -> tuple[str | None, str]:
    """Return (region, text with that region's tokens removed)."""
    region: str | None = None
    for m in PAREN_RE.finditer(text):
        region = normalize_region(m.group("body"))
        if region:
            break
    if region is None:
        return None, text

    def _drop(m: re.Match[str]) -> str:
        return " " if normalize_region(m.group("body")) == region else m.group(0)

    return region, PAREN_RE.sub(_drop, text)


def extract_serial(text: str) -> tuple[str | None, str]:
    """Return (serial, text without the serial token). First serial wins."""
    m = SERIAL_RE.search(text)
    if m:
        serial = f"{m.group('prefix').upper()}-{m.group('number')}"
        return serial, text[: m.start()] + " " + text[m.end():]
    m = LIGHTSPAN_RE.search(text)
    if m:
        return f"LSP-{m.group('number')}", text[: m.start()] + " " + text[m.end():]
    return None, text


def clean_whitespace(text: str) -> str:
    text = re.sub(r"\s+", " ", text).strip()
    return text.strip(" -")


def probe_serial(path: Path) -> str | None:
    """Look for the SYSTEM.CNF boot executable name in a data track."""
    try:
        with open(path, "rb") as f:
            head = f.read(PROBE_BYTES)
    except OSError as exc:
        logger.debug("serial probe failed for %s: %s", path, exc)
        return None
    m = BOOT_SERIAL_RE.search(head)
    if not m:
        return None
    prefix, major, minor = (g.decode("ascii") for g in m.groups())
    return f"{prefix}-{major}{minor}"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass
class ParsedName:
    """Tokens extracted from a filename stem."""

    title: str
    region: str | None = None
    serial: str | None = None
    version: str | None = None
    disc_number: int | None = None
    disc_count: int | None = None
    track_number: int | None = None


def parse_name(stem: str) -> ParsedName:
    """Split a filename stem into title and metadata tokens."""
    text = stem
    disc_number = disc_count = None
    m = DISC_RE.search(text)
    if m:
        disc_number = int(m.group("number"))
        disc_count = int(m.group("count")) if m.group("count") else None
    text = DISC_RE.sub(" ", text)
    text = DISC_RANGE_RE.sub(" ", text)

    serial, text = extract_serial(text)

    version = None
    m = VERSION_RE.search(text)
    if m:
        version = re.sub(r"\s+", " ", m.group("version"))
        text = text[: m.start()] + " " + text[m.end():]

    track_number = None
    m = TRACK_RE.search(text)
    if m:
        track_number = int(m.group("number"))
        text = TRACK_RE.sub(" ", text)

    region, text = extract_region(text)

    return ParsedName(
        title=clean_whitespace(text),
        region=region,
        serial=serial,
        version=version,
        disc_number=disc_number,
        disc_count=disc_count,
        track_number=track_number,
    )


def _sheet_entry_for(sheet: CueSheet, bin_path: Path) -> CueFile | None:
    key = str(bin_path).casefold()
    for entry in sheet.files:
        if str(sheet.resolve(entry.reference)).casefold() == key:
            return entry
    return None


def parse_disc_name(
    file_path: Path,
    sheet: CueSheet | None = None,
    rules: tuple[ContentRule, ...] = DEFAULT_RULES,
    probe: bool = True,
) -> DiscDescriptor:
    """Parse one disc file into a DiscDescriptor.

    For a .cue file the sheet is read (unless given) to learn its tracks and
    missing BIN files. For a raw .bin file ``sheet`` is the cue sheet that
    references it, if any; its track layout decides whether the file is an
    audio track.
    """
    ext = file_path.suffix.lower()
    parsed = parse_name(file_path.stem)
    fmt = DiscFormat.CONTAINER if ext == CONTAINER_EXT else DiscFormat.BIN_CUE

    desc = DiscDescriptor(
        file_path=file_path,
        title=parsed.title,
        format=fmt,
        region=parsed.region,
        serial=parsed.serial,
        version=parsed.version,
        disc_number=parsed.disc_number,
        disc_count=parsed.disc_count,
    )

    data_track: Path | None = None
    if ext == SHEET_EXT:
        if sheet is None:
            try:
                sheet = read_cue(file_path)
            except OSError as exc:
                desc.warnings.append(f"cue sheet unreadable: {exc}")
        if sheet is not None:
            desc.sheet_path = file_path
            desc.track_count = len(sheet.tracks) or None
            desc.track_files = sheet.file_paths()
            desc.missing_tracks = sheet.missing_files()
            if desc.missing_tracks:
                names = ", ".join(p.name for p in desc.missing_tracks)
                desc.warnings.append(f"{WARN_MISSING_BINS}: {names}")
            data_track = next(
                (p for f, p in zip(sheet.files, desc.track_files) if not f.is_audio and p.is_file()),
                None,
            )
    elif ext == BINARY_EXT:
        entry = _sheet_entry_for(sheet, file_path) if sheet is not None else None
        if entry is not None and sheet is not None:
            desc.sheet_path = sheet.path
            desc.track_count = len(sheet.tracks) or None
            if len(sheet.files) > 1:
                desc.track_number = entry.first_track_number or parsed.track_number
            desc.is_audio_track = entry.is_audio
        else:
            desc.track_number = parsed.track_number
            # Without a sheet, only the first track of a split image holds data.
            desc.is_audio_track = parsed.track_number is not None and parsed.track_number >= 2
            if sheet is None:
                desc.warnings.append(WARN_NO_SHEET)
        if not desc.is_audio_track:
            data_track = file_path

    if desc.serial is None and probe and data_track is not None:
        desc.serial = probe_serial(data_track)
        if desc.serial:
            logger.debug("serial %s recovered from %s", desc.serial, data_track.name)

    desc.content_type = classify_content(desc.title, desc.serial, rules)

    if desc.content_type is ContentType.CHEAT:
        desc.warnings.append(WARN_CHEAT)
    elif desc.content_type is ContentType.EDUCATIONAL:
        lightspan = is_lightspan_serial(desc.serial) or "lightspan" in desc.title.lower()
        desc.warnings.append(WARN_LIGHTSPAN if lightspan else WARN_EDUCATIONAL)
    elif desc.serial is None:
        desc.warnings.append(WARN_NO_SERIAL)

    if desc.is_audio_track:
        track = desc.track_number or 0
        desc.warnings.append(f"audio track {track:02d} of a multi-track disc; handled with its cue sheet")

    return desc


# ---------------------------------------------------------------------------
# Directory scanning
# ---------------------------------------------------------------------------


@dataclass
class ScanResult:
    root: Path
    descriptors: list[DiscDescriptor] = field(default_factory=list)
    playlists: list[Path] = field(default_factory=list)


def list_files(root: Path, recursive: bool) -> list[Path]:
    candidates = root.rglob("*") if recursive else root.iterdir()
    return sorted(
        (p for p in candidates if p.is_file() and not p.name.startswith(".")),
        key=lambda p: str(p).casefold(),
    )


def scan_directory(
    root: Path,
    recursive: bool = False,
    rules: tuple[ContentRule, ...] = DEFAULT_RULES,
    probe: bool = True,
) -> ScanResult:
    """Parse every disc file under ``root``.

    BIN files referenced by a cue sheet are not reported on their own unless
    they are audio tracks (which the grouper sets aside); the cue sheet
    descriptor stands for the whole disc.
    """
    if not root.exists():
        raise FileNotFoundError(f"Scan root not found: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Scan root is not a directory: {root}")

    files = list_files(root, recursive)
    result = ScanResult(root=root)

    sheets: dict[Path, CueSheet] = {}
    owners: dict[str, CueSheet] = {}
    for path in files:
        if path.suffix.lower() != SHEET_EXT:
            continue
        try:
            sheet = read_cue(path)
        except OSError as exc:
            logger.warning("Could not read cue sheet %s: %s", path, exc)
            continue
        sheets[path] = sheet
        for track_path in sheet.file_paths():
            owners.setdefault(str(track_path).casefold(), sheet)

    for path in files:
        ext = path.suffix.lower()
        if ext == PLAYLIST_EXT:
            result.playlists.append(path)
            continue
        if ext not in DISC_EXTS:
            continue
        if ext == SHEET_EXT:
            if path not in sheets:
                continue
            desc = parse_disc_name(path, sheets[path], rules, probe)
        elif ext == BINARY_EXT:
            owner = owners.get(str(path).casefold())
            desc = parse_disc_name(path, owner, rules, probe)
            if owner is not None and not desc.is_audio_track:
                continue
        else:
            desc = parse_disc_name(path, None, rules, probe)
        for warning in desc.warnings:
            logger.debug("%s: %s", path.name, warning)
        result.descriptors.append(desc)

    logger.info(
        "Scanned %s: %d disc file(s), %d playlist(s)",
        root,
        len(result.descriptors),
        len(result.playlists),
    )
    return result
