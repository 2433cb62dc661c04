"""chdman invocation.

The engine only ever sees the ChdTool protocol; ChdmanTool is the real
implementation and runs one chdman process per call.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path
from typing import Protocol

from .errors import ConversionCancelledError, ToolError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5
STDERR_TAIL_LINES = 5


class ChdTool(Protocol):
    def create_cd(
        self, source: Path, destination: Path, cancel_event: threading.Event | None = None
    ) -> int:
        ...

    def extract_cd(
        self, source: Path, destination: Path, cancel_event: threading.Event | None = None
    ) -> int:
        ...


def build_create_command(executable: str, source: Path, destination: Path) -> list[str]:
    """chdman createcd -i <cue> -o <chd>"""
    return [executable, "createcd", "-i", str(source), "-o", str(destination)]


def build_extract_command(executable: str, source: Path, destination: Path) -> list[str]:
    """chdman extractcd -i <chd> -o <cue>"""
    return [executable, "extractcd", "-i", str(source), "-o", str(destination)]


class ChdmanTool:
    """Runs chdman as a subprocess.

    ``executable`` must already be resolved by the caller (CLI or config);
    nothing here searches PATH.
    """

    def __init__(self, executable: str | Path, poll_interval: float = POLL_INTERVAL) -> None:
        self.executable = str(executable)
        self.poll_interval = poll_interval

    def create_cd(
        self, source: Path, destination: Path, cancel_event: threading.Event | None = None
    ) -> int:
        return self._run(build_create_command(self.executable, source, destination), cancel_event)

    def extract_cd(
        self, source: Path, destination: Path, cancel_event: threading.Event | None = None
    ) -> int:
        return self._run(build_extract_command(self.executable, source, destination), cancel_event)

    def _run(self, cmd: list[str], cancel_event: threading.Event | None) -> int:
        logger.info("Running: %s", " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise ToolError(f"Could not start {self.executable}: {exc}") from exc

        while True:
            try:
                _, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    proc.terminate()
                    try:
                        proc.wait(timeout=10)
                    except subprocess.TimeoutExpired:
                        proc.kill()
                        proc.wait()
                    raise ConversionCancelledError(f"Cancelled: {cmd[1]} {cmd[3]}") from None

        if proc.returncode != 0:
            tail = "\n".join((stderr or "").strip().splitlines()[-STDERR_TAIL_LINES:])
            logger.warning("chdman exited with %d: %s", proc.returncode, tail)
        return proc.returncode
