"""Logging setup and console/log helpers."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme

THEME = Theme(
    {
        "title": "bold cyan",
        "accent": "cyan",
        "info": "bright_cyan",
        "ok": "bold green",
        "warn": "bold yellow",
        "err": "bold red",
        "dim": "dim",
        "path": "bright_white",
        "k": "dim",
        "v": "bright_white",
    }
)
console = Console(theme=THEME, highlight=False)
err_console = Console(theme=THEME, highlight=False, stderr=True)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(log_dir: Path, verbose: bool = False) -> Path | None:
    """Set up file logging for the psx_wizard package.

    Returns the log file path if successful, None otherwise.
    """
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"psx_wizard_{timestamp}.log"
        handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError:
        return None

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger = logging.getLogger("psx_wizard")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for old in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    return log_file


# ---------------------------------------------------------------------------
# Console helpers (print and mirror into the log)
# ---------------------------------------------------------------------------

_log = logging.getLogger("psx_wizard.cli")


def log(msg: str) -> None:
    console.print(escape(msg))
    _log.info(msg)


def warn(msg: str) -> None:
    err_console.print(f"[warn]WARN[/warn] {escape(msg)}")
    _log.warning(msg)


def error(msg: str) -> None:
    err_console.print(f"[err]ERROR[/err] {escape(msg)}")
    _log.error(msg)
