"""YAML configuration for psx-wizard."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .convert import DEFAULT_MAX_WORKERS
from .errors import ConfigError
from .models import ContentMode
from .naming import NamingOptions

DEFAULT_LOG_DIR = Path.home() / ".local" / "share" / "psx-wizard"


TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
FALSE_WORDS = frozenset({"false", "no", "off", "0"})


def _flag(node: dict[str, Any], key: str, default: bool) -> bool:
    """Boolean setting; quoted on/off words are accepted, anything else is an error."""
    value = node.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    raise ConfigError(f"{key} must be true or false, got {value!r}")


def _path_setting(value: Any) -> Path | None:
    """Setting with ~ and $VARS expanded, or None when blank."""
    text = str(value or "").strip()
    if not text:
        return None
    return Path(os.path.expandvars(text)).expanduser()


@dataclass(frozen=True)
class PlaylistCfg:
    extension: str | None = None
    backup: bool = True


@dataclass(frozen=True)
class AppCfg:
    chdman: str = "chdman"
    max_workers: int = DEFAULT_MAX_WORKERS
    content_mode: ContentMode = ContentMode.STANDALONE
    naming: NamingOptions = field(default_factory=NamingOptions)
    playlist: PlaylistCfg = field(default_factory=PlaylistCfg)
    log_dir: Path = DEFAULT_LOG_DIR


def default_config() -> AppCfg:
    return AppCfg()


def _parse_content_mode(value: Any) -> ContentMode:
    s = str(value).strip().lower().replace("_", "-")
    try:
        return ContentMode(s)
    except ValueError:
        choices = ", ".join(m.value for m in ContentMode)
        raise ConfigError(f"content_mode must be one of: {choices}") from None


def load_config(path: Path) -> AppCfg:
    raw: dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if loaded is None:
            raw = {}
        elif not isinstance(loaded, dict):
            raise ConfigError("config root must be a mapping")
        else:
            raw = cast(dict[str, Any], loaded)
    else:
        raise FileNotFoundError(f"Config not found: {path}")

    chdman_path = _path_setting(raw.get("chdman"))
    chdman = str(chdman_path) if chdman_path else "chdman"

    try:
        max_workers = int(raw.get("max_workers", DEFAULT_MAX_WORKERS))
    except (TypeError, ValueError):
        raise ConfigError("max_workers must be an integer") from None
    if max_workers < 1:
        raise ConfigError("max_workers must be at least 1")

    content_mode = _parse_content_mode(raw.get("content_mode", ContentMode.STANDALONE.value))

    naming_node: dict[str, Any] = cast(dict[str, Any], raw.get("naming") or {})
    naming = NamingOptions(
        restore_articles=_flag(naming_node, "restore_articles", False),
        strip_language_tags=_flag(naming_node, "strip_language_tags", True),
        include_version=_flag(naming_node, "include_version", False),
    )

    playlist_node: dict[str, Any] = cast(dict[str, Any], raw.get("playlist") or {})
    extension = str(playlist_node.get("extension") or "").strip().lower()
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    playlist = PlaylistCfg(
        extension=extension or None,
        backup=_flag(playlist_node, "backup", True),
    )

    log_dir = _path_setting(raw.get("log_dir")) or DEFAULT_LOG_DIR

    return AppCfg(
        chdman=chdman,
        max_workers=max_workers,
        content_mode=content_mode,
        naming=naming,
        playlist=playlist,
        log_dir=log_dir,
    )
