"""Canonical filenames for discs, tracks and playlists.

Layout: <Title> (<Region>) (Track NN) [vX] [<Serial>] (Disc N)<ext>
Segments without a value are left out entirely.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .models import DiscDescriptor, TitleGroup
from .parser import DISC_RANGE_RE, DISC_RE, PAREN_RE, clean_whitespace, normalize_region

ARTICLE_RE = re.compile(r"^(?P<body>.+?),\s*(?P<article>The|A|An)$", re.IGNORECASE)
LANGUAGE_CODES = {
    "en", "fr", "de", "es", "it", "nl", "pt", "sv", "no", "da", "fi", "ja", "ko", "zh", "ru", "pl",
}
INVALID_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


@dataclass(frozen=True)
class NamingOptions:
    restore_articles: bool = False
    strip_language_tags: bool = True
    include_version: bool = False


def restore_article(title: str) -> str:
    """'Legend of Dragoon, The' -> 'The Legend of Dragoon'."""
    m = ARTICLE_RE.match(title.strip())
    if not m:
        return title
    article = m.group("article").capitalize()
    return f"{article} {m.group('body').strip()}"


def _is_language_list(body: str) -> bool:
    codes = [c.strip().lower() for c in body.split(",")]
    return bool(codes) and all(c in LANGUAGE_CODES for c in codes)


def strip_language_tags(title: str) -> str:
    """Remove parenthetical language lists such as '(En,Fr,De)'."""
    stripped = PAREN_RE.sub(lambda m: " " if _is_language_list(m.group("body")) else m.group(0), title)
    return clean_whitespace(stripped)


def remove_disc_suffix(name: str) -> str:
    return clean_whitespace(DISC_RANGE_RE.sub(" ", DISC_RE.sub(" ", name)))


def normalize_disc_suffix(name: str, disc_number: int) -> str:
    """Rewrite any disc token in ``name`` to '(Disc N)' using ``disc_number``.

    '(Disc 1 of 2)', '(CD 1)', '(Disk 1 of 2)' and '(Discs 1-3)' all become
    '(Disc N)'; the set size is never used.
    """
    return f"{remove_disc_suffix(name)} (Disc {disc_number})"


def collapse_region(title: str, region: str | None) -> str:
    """Drop parenthesized region tokens equal to ``region`` from the title."""
    if not region:
        return title
    stripped = PAREN_RE.sub(
        lambda m: " " if normalize_region(m.group("body")) == region else m.group(0), title
    )
    return clean_whitespace(stripped)


def sanitize_filename(name: str) -> str:
    """Replace characters that are invalid in filenames with '_'."""
    return INVALID_CHARS_RE.sub("_", name).strip()


def clean_title(title: str, region: str | None, options: NamingOptions) -> str:
    title = remove_disc_suffix(title)
    title = collapse_region(title, region)
    if options.strip_language_tags:
        title = strip_language_tags(title)
    if options.restore_articles:
        title = restore_article(title)
    return clean_whitespace(title)


def compose_name(
    title: str,
    region: str | None = None,
    serial: str | None = None,
    disc_number: int | None = None,
    track_number: int | None = None,
    version: str | None = None,
    extension: str = "",
) -> str:
    parts = [title]
    if region:
        parts.append(f"({region})")
    if track_number is not None:
        parts.append(f"(Track {track_number:02d})")
    if version:
        parts.append(f"[{version}]")
    if serial:
        parts.append(f"[{serial}]")
    if disc_number is not None:
        parts.append(f"(Disc {disc_number})")
    return sanitize_filename(" ".join(p for p in parts if p) + extension)


def disc_filename(
    group: TitleGroup,
    disc: DiscDescriptor,
    extension: str,
    options: NamingOptions = NamingOptions(),
    track_number: int | None = None,
) -> str:
    """Canonical filename for one file of ``disc`` inside ``group``.

    ``track_number`` is given for the binary tracks of a multi-track image.
    """
    return compose_name(
        clean_title(group.canonical_title, group.region, options),
        region=group.region,
        serial=disc.serial,
        disc_number=disc.disc_number if group.is_multi_disc else None,
        track_number=track_number,
        version=(disc.version or group.version) if options.include_version else None,
        extension=extension,
    )


def playlist_filename(group: TitleGroup, options: NamingOptions = NamingOptions()) -> str:
    """'<Title> (<Region>).m3u'; playlists never carry a serial."""
    return compose_name(
        clean_title(group.canonical_title, group.region, options),
        region=group.region,
        version=group.version if options.include_version else None,
        extension=".m3u",
    )


def format_descriptor(
    disc: DiscDescriptor,
    options: NamingOptions = NamingOptions(),
    multi_disc: bool | None = None,
) -> str:
    """Canonical filename for a lone descriptor.

    Without an explicit ``multi_disc`` a disc suffix is kept when the disc
    knows its number and is not marked as the only disc of its set.
    """
    if multi_disc is None:
        multi_disc = disc.disc_number is not None and disc.disc_count != 1
    return compose_name(
        clean_title(disc.title, disc.region, options),
        region=disc.region,
        serial=disc.serial,
        disc_number=disc.disc_number if multi_disc else None,
        track_number=disc.track_number,
        version=disc.version if options.include_version else None,
        extension=disc.extension,
    )
