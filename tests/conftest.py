"""
Pytest configuration and fixtures for psx-wizard tests.
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DATA_MODE = "MODE2/2352"


def cue_text(tracks: list[tuple[str, str]], newline: str = "\n") -> str:
    """Build a cue sheet with one FILE per (bin name, track mode)."""
    lines = []
    for number, (bin_name, mode) in enumerate(tracks, start=1):
        lines.append(f'FILE "{bin_name}" BINARY')
        lines.append(f"  TRACK {number:02d} {mode}")
        if mode == "AUDIO":
            lines.append("    INDEX 00 00:00:00")
            lines.append("    INDEX 01 00:02:00")
        else:
            lines.append("    INDEX 01 00:00:00")
    return newline.join(lines) + newline


class DiscTree:
    """Builds disc image layouts under a temporary folder."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def folder(self, rel: str = "") -> Path:
        path = self.root / rel if rel else self.root
        path.mkdir(parents=True, exist_ok=True)
        return path

    def file(self, rel: str, data: bytes = b"") -> Path:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def single(self, stem: str, folder: str = "", data: bytes = b"\x00" * 2352) -> Path:
        """A one-track disc: '<stem>.cue' + '<stem>.bin'."""
        base = self.folder(folder)
        (base / f"{stem}.bin").write_bytes(data)
        cue = base / f"{stem}.cue"
        cue.write_text(cue_text([(f"{stem}.bin", DATA_MODE)]), encoding="utf-8")
        return cue

    def multi_track(
        self,
        stem: str,
        audio_tracks: int = 1,
        folder: str = "",
        sizes: list[int] | None = None,
    ) -> Path:
        """A split image: '<stem> (Track 01).bin' data plus audio tracks."""
        base = self.folder(folder)
        count = audio_tracks + 1
        sizes = sizes or [2352 * (n + 1) for n in range(count)]
        tracks = []
        for n in range(1, count + 1):
            name = f"{stem} (Track {n:02d}).bin"
            (base / name).write_bytes(bytes([n]) * sizes[n - 1])
            tracks.append((name, DATA_MODE if n == 1 else "AUDIO"))
        cue = base / f"{stem}.cue"
        cue.write_text(cue_text(tracks), encoding="utf-8")
        return cue

    def chd(self, stem: str, folder: str = "") -> Path:
        return self.file(os.path.join(folder, f"{stem}.chd"), b"MComprHD")


class FakeChdTool:
    """Stand-in for chdman: records calls and writes (or withholds) the output."""

    def __init__(self, exit_code: int = 0, produce: bool = True, fail_for: set[str] | None = None):
        self.exit_code = exit_code
        self.produce = produce
        self.fail_for = fail_for or set()
        self.calls: list[tuple[str, Path, Path]] = []
        self._lock = threading.Lock()

    def _record(self, kind: str, source: Path, destination: Path) -> int:
        with self._lock:
            self.calls.append((kind, source, destination))
        if source.name in self.fail_for:
            return 1
        return self.exit_code

    def create_cd(self, source: Path, destination: Path, cancel_event=None) -> int:
        code = self._record("createcd", source, destination)
        if self.produce and code == 0:
            destination.write_bytes(b"MComprHD")
        return code

    def extract_cd(self, source: Path, destination: Path, cancel_event=None) -> int:
        code = self._record("extractcd", source, destination)
        if self.produce and code == 0:
            bin_name = destination.with_suffix(".bin").name
            destination.with_suffix(".bin").write_bytes(b"\x00" * 2352)
            destination.write_text(cue_text([(bin_name, DATA_MODE)]), encoding="utf-8")
        return code


@pytest.fixture
def disc_tree(tmp_path: Path) -> DiscTree:
    """Fixture providing a DiscTree rooted at a fresh library folder."""
    root = tmp_path / "library"
    root.mkdir()
    return DiscTree(root)


@pytest.fixture
def fake_tool() -> FakeChdTool:
    return FakeChdTool()
