"""Group parsed disc descriptors into titles.

Mainline and demo discs are bucketed by directory, normalized title, region
and version; cheat and educational discs always get a bucket of their own.
Inside a bucket every disc gets a disc number: parsed numbers are kept,
unnumbered discs share the number of another disc with the same serial, and
whatever is left is numbered from the lowest free slot upwards.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path

from .classifier import DEFAULT_RULES, ContentRule
from .errors import UnsupportedContentModeError
from .models import ContentMode, DiscDescriptor, DiscFormat, TitleGroup
from .parser import DISC_RANGE_RE, DISC_RE, parse_name, scan_directory
from .playlist import read_playlist_entries

logger = logging.getLogger(__name__)

# Keeps a sheet ahead of its container when both exist for one disc.
FORMAT_ORDER = {DiscFormat.BIN_CUE: 0, DiscFormat.CONTAINER: 1}

GroupKey = tuple[str, ...]


@dataclass
class GroupingResult:
    groups: list[TitleGroup] = field(default_factory=list)
    omitted: list[DiscDescriptor] = field(default_factory=list)
    audio_tracks: list[DiscDescriptor] = field(default_factory=list)
    orphan_playlists: list[Path] = field(default_factory=list)


def strip_disc_suffix(title: str) -> str:
    title = DISC_RE.sub(" ", title)
    title = DISC_RANGE_RE.sub(" ", title)
    return re.sub(r"\s+", " ", title).strip()


def normalize_title_key(title: str) -> str:
    """Comparison form of a title: no disc suffix, single spaces, casefolded.

    Parenthesized qualifiers stay part of the key, so
    'Command & Conquer (GDI)' and 'Command & Conquer (NOD)' never match.
    """
    return strip_disc_suffix(title).casefold()


def _group_key(disc: DiscDescriptor) -> GroupKey:
    folder = str(disc.file_path.parent).casefold()
    if disc.is_special:
        # Never merged with anything, not even an identically named disc.
        return ("single", folder, str(disc.file_path).casefold())
    return (
        "title",
        folder,
        normalize_title_key(disc.title),
        (disc.region or "").casefold(),
        (disc.version or "").casefold(),
    )


def _disc_identity(disc: DiscDescriptor) -> str:
    if disc.serial:
        return "serial:" + disc.serial.upper()
    return "name:" + disc.file_path.stem.casefold()


def _sort_key(disc: DiscDescriptor) -> tuple:
    return (disc.disc_number or 1, FORMAT_ORDER[disc.format], disc.file_path.name.casefold())


def assign_disc_numbers(discs: list[DiscDescriptor]) -> list[DiscDescriptor]:
    """Fill in missing disc numbers without depending on input order.

    Returns new descriptors sorted by disc number; the inputs are untouched.
    """
    by_serial: dict[str, int] = {}
    for disc in sorted(discs, key=lambda d: (d.disc_number or 0, d.file_path.name.casefold())):
        if disc.disc_number is not None and disc.serial:
            by_serial.setdefault(disc.serial.upper(), disc.disc_number)

    numbers: dict[str, int] = {}
    used = {d.disc_number for d in discs if d.disc_number is not None}
    pending = sorted(
        {
            _disc_identity(d)
            for d in discs
            if d.disc_number is None and not (d.serial and d.serial.upper() in by_serial)
        }
    )
    next_free = 1
    for identity in pending:
        while next_free in used:
            next_free += 1
        numbers[identity] = next_free
        used.add(next_free)

    assigned: list[DiscDescriptor] = []
    for disc in discs:
        number = disc.disc_number
        if number is None and disc.serial:
            number = by_serial.get(disc.serial.upper())
        if number is None:
            number = numbers[_disc_identity(disc)]
        assigned.append(replace(disc, disc_number=number, warnings=list(disc.warnings)))
    return sorted(assigned, key=_sort_key)


def _dedicated_folder(discs: list[DiscDescriptor], root: Path | None) -> Path | None:
    """The shared folder of a group when it holds nothing else, or None."""
    folders = {d.file_path.parent for d in discs}
    if len(folders) != 1:
        return None
    folder = folders.pop()
    if root is not None and os.path.normcase(folder.resolve()) == os.path.normcase(root.resolve()):
        return None
    if len({d.disc_number for d in discs}) > 1:
        return folder

    own: set[str] = set()
    for disc in discs:
        own.add(disc.file_path.name.casefold())
        own.update(p.name.casefold() for p in disc.track_files if p.parent == folder)
    try:
        entries = list(folder.iterdir())
    except OSError:
        return None
    for entry in entries:
        if entry.is_dir():
            return None
        if entry.suffix.lower() == ".m3u":
            continue
        if entry.name.casefold() not in own:
            return None
    return folder


def _playlist_matches(path: Path, group: TitleGroup) -> bool:
    if path.parent != group.directory:
        return False
    parsed = parse_name(path.stem)
    if (
        normalize_title_key(parsed.title) == normalize_title_key(group.canonical_title)
        and (parsed.region or "").casefold() == (group.region or "").casefold()
    ):
        return True
    names = {d.file_path.name.casefold() for d in group.discs}
    try:
        entries = read_playlist_entries(path)
    except OSError:
        return False
    return any(Path(e).name.casefold() in names for e in entries)


def group_discs(
    descriptors: list[DiscDescriptor],
    content_mode: ContentMode = ContentMode.STANDALONE,
    playlists: list[Path] | None = None,
    root: Path | None = None,
) -> GroupingResult:
    """Group descriptors into TitleGroups.

    The result does not depend on the order of ``descriptors``.
    """
    if content_mode is ContentMode.AS_DISC:
        raise UnsupportedContentModeError(
            "content mode 'as-disc' is not supported; use 'omit' or 'standalone'"
        )

    result = GroupingResult()
    buckets: dict[GroupKey, list[DiscDescriptor]] = {}
    for disc in descriptors:
        if disc.is_audio_track:
            result.audio_tracks.append(disc)
            continue
        if disc.is_special and content_mode is ContentMode.OMIT:
            logger.debug("Omitting %s (%s)", disc.file_path.name, disc.content_type.value)
            result.omitted.append(disc)
            continue
        buckets.setdefault(_group_key(disc), []).append(disc)

    for key in sorted(buckets):
        discs = assign_disc_numbers(buckets[key])
        numbers = {d.disc_number for d in discs}
        if len(numbers) > 1:
            discs = [replace(d, disc_count=len(numbers)) for d in discs]
        first = discs[0]
        group = TitleGroup(
            canonical_title=strip_disc_suffix(first.title),
            region=first.region,
            version=first.version,
            discs=discs,
            is_multi_disc=len(numbers) >= 2 and not any(d.is_special for d in discs),
        )
        group.root_folder = _dedicated_folder(discs, root)
        result.groups.append(group)

    result.groups.sort(
        key=lambda g: (g.canonical_title.casefold(), (g.region or "").casefold(), str(g.directory).casefold())
    )

    for path in sorted(playlists or [], key=lambda p: str(p).casefold()):
        owner = next(
            (g for g in result.groups if g.playlist_path is None and _playlist_matches(path, g)),
            None,
        )
        if owner is None:
            result.orphan_playlists.append(path)
        else:
            owner.playlist_path = path

    logger.debug(
        "Grouped %d disc file(s) into %d title(s) (%d omitted, %d audio tracks)",
        len(descriptors),
        len(result.groups),
        len(result.omitted),
        len(result.audio_tracks),
    )
    return result


def scan_and_group(
    root: Path,
    recursive: bool = False,
    content_mode: ContentMode = ContentMode.STANDALONE,
    rules: tuple[ContentRule, ...] = DEFAULT_RULES,
) -> GroupingResult:
    scan = scan_directory(root, recursive=recursive, rules=rules)
    return group_discs(scan.descriptors, content_mode, scan.playlists, root)
