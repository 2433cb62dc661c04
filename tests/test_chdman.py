"""Tests for chdman command construction and process handling."""

import subprocess
import threading
from pathlib import Path

import pytest

from psx_wizard import chdman
from psx_wizard.chdman import ChdmanTool, build_create_command, build_extract_command
from psx_wizard.errors import ConversionCancelledError, ToolError


class FakePopen:
    """Minimal Popen stand-in driven by class attributes."""

    returncode_value = 0
    stderr_text = ""
    timeouts = 0
    instances: list["FakePopen"] = []

    def __init__(self, cmd, **kwargs):
        self.cmd = cmd
        self.kwargs = kwargs
        self.returncode = None
        self.terminated = False
        self._timeouts = self.timeouts
        FakePopen.instances.append(self)

    def communicate(self, timeout=None):
        if self._timeouts:
            self._timeouts -= 1
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        self.returncode = self.returncode_value
        return "", self.stderr_text

    def terminate(self):
        self.terminated = True

    def wait(self, timeout=None):
        self.returncode = -15
        return self.returncode


@pytest.fixture
def fake_popen(monkeypatch):
    FakePopen.instances = []
    FakePopen.returncode_value = 0
    FakePopen.stderr_text = ""
    FakePopen.timeouts = 0
    monkeypatch.setattr(chdman.subprocess, "Popen", FakePopen)
    return FakePopen


class TestCommands:
    def test_create_command(self):
        cmd = build_create_command("chdman", Path("/g/a.cue"), Path("/g/a.chd"))
        assert cmd == ["chdman", "createcd", "-i", "/g/a.cue", "-o", "/g/a.chd"]

    def test_extract_command(self):
        cmd = build_extract_command("/opt/chdman", Path("/g/a.chd"), Path("/g/a.cue"))
        assert cmd == ["/opt/chdman", "extractcd", "-i", "/g/a.chd", "-o", "/g/a.cue"]


class TestChdmanTool:
    """Tests for ChdmanTool._run() via the public methods."""

    def test_success(self, fake_popen):
        tool = ChdmanTool("chdman", poll_interval=0.01)
        assert tool.create_cd(Path("a.cue"), Path("a.chd")) == 0
        assert fake_popen.instances[0].cmd[1] == "createcd"

    def test_nonzero_exit_returned(self, fake_popen, caplog):
        fake_popen.returncode_value = 1
        fake_popen.stderr_text = "Error: file not found\n"
        tool = ChdmanTool("chdman", poll_interval=0.01)
        with caplog.at_level("WARNING", logger="psx_wizard.chdman"):
            assert tool.extract_cd(Path("a.chd"), Path("a.cue")) == 1
        assert "file not found" in caplog.text

    def test_start_failure_is_tool_error(self, monkeypatch):
        def boom(*args, **kwargs):
            raise FileNotFoundError("chdman")

        monkeypatch.setattr(chdman.subprocess, "Popen", boom)
        with pytest.raises(ToolError):
            ChdmanTool("/missing/chdman").create_cd(Path("a.cue"), Path("a.chd"))

    def test_cancel_terminates_process(self, fake_popen):
        fake_popen.timeouts = 3
        event = threading.Event()
        event.set()
        tool = ChdmanTool("chdman", poll_interval=0.01)
        with pytest.raises(ConversionCancelledError):
            tool.create_cd(Path("a.cue"), Path("a.chd"), event)
        assert fake_popen.instances[0].terminated

    def test_waits_through_timeouts(self, fake_popen):
        """Without a cancel request the process is polled until it exits."""
        fake_popen.timeouts = 2
        tool = ChdmanTool("chdman", poll_interval=0.01)
        assert tool.create_cd(Path("a.cue"), Path("a.chd"), threading.Event()) == 0
