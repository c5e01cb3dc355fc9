"""Tests for ProcessRunner and platform naming"""

import subprocess
import sys

import pytest

from dbvault.utils.platform_paths import PosixPlatform, WindowsPlatform
from dbvault.utils.process_runner import ProcessRunner, display_command


def test_merged_output_captured():
    result = ProcessRunner().run([sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"])

    assert result.ok
    assert sorted(result.lines) == ["err", "out"]


def test_stdout_streamed_to_file(tmp_path):
    target = tmp_path / "dump.sql"

    result = ProcessRunner().run(
        [sys.executable, "-c", "import sys; print('SELECT 1;'); print('warn', file=sys.stderr); sys.exit(3)"],
        stdout=target,
    )

    assert result.returncode == 3
    assert target.read_text().strip() == "SELECT 1;"
    assert result.lines == ["warn"]


def test_stdin_from_file(tmp_path):
    source = tmp_path / "in.sql"
    source.write_text("hello\n")

    result = ProcessRunner().run([sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"], stdin=source)

    assert result.lines[0] == "HELLO"


def test_timeout_propagates():
    with pytest.raises(subprocess.TimeoutExpired):
        ProcessRunner().run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)


def test_display_command_masks_secrets():
    assert display_command(["rar", "a", "-hpsecret", "x.rar"], ("secret",)) == "rar a -hp*** x.rar"


def test_platform_executables(tmp_path):
    assert PosixPlatform().executable(tmp_path, "mysql") == tmp_path / "mysql"
    assert WindowsPlatform().executable(tmp_path, "mysql") == tmp_path / "mysql.exe"
    assert WindowsPlatform().archiver(tmp_path) == tmp_path / "Rar.exe"
