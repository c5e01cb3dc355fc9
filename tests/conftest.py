"""
Shared fixtures for dbvault tests.

External tools are replaced by FakeToolRunner, which emulates mysqldump,
the mysql client and rar closely enough for the engine to run end to end.
"""

import json
import os
from datetime import datetime
from pathlib import Path

import pytest
import yaml

from dbvault.core.backup_engine import BackupEngine
from dbvault.core.config_manager import ConfigManager
from dbvault.utils.platform_paths import PosixPlatform
from dbvault.utils.process_runner import ProcessResult

DUMP_SQL = "CREATE TABLE orders (id INT PRIMARY KEY);\nINSERT INTO orders VALUES (1);\n"
FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0)


class FakeToolRunner:
    """Stands in for ProcessRunner and records every invocation"""

    def __init__(self):
        self.calls: list[dict] = []
        self.exit_codes: dict[str, int] = {}
        self.option_files: list[str] = []
        self.restored: list[str] = []
        self.dump_sql = DUMP_SQL
        self.archive_members: list[str] | None = None

    def tools(self) -> list[str]:
        return [call["tool"] for call in self.calls]

    def run(self, command, stdin=None, stdout=None, timeout=None):
        tool = Path(command[0]).stem.lower()
        self.calls.append({"tool": tool, "command": list(command), "stdin": stdin, "stdout": stdout})

        for arg in command:
            if arg.startswith("--defaults-extra-file="):
                self.option_files.append(Path(arg.split("=", 1)[1]).read_text())

        code = self.exit_codes.get(tool, 0)
        if tool == "mysqldump":
            return self._mysqldump(stdout, code)
        if tool == "mysql":
            return self._mysql(stdin, code)
        if tool == "rar":
            return self._rar(command, code)
        raise FileNotFoundError(command[0])

    def _mysqldump(self, stdout, code):
        if code:
            return ProcessResult(code, ["mysqldump: Got error: 1045: Access denied for user"])
        Path(stdout).write_text(self.dump_sql)
        return ProcessResult(0, [])

    def _mysql(self, stdin, code):
        if code:
            return ProcessResult(code, ["ERROR 1064 (42000) at line 1: syntax error"])
        self.restored.append(Path(stdin).read_text())
        return ProcessResult(0, [])

    def _rar(self, command, code):
        action = command[1]
        if action == "a":
            password = next(a[3:] for a in command if a.startswith("-hp"))
            destination, source = Path(command[-2]), Path(command[-1])
            if code:
                return ProcessResult(code, ["Cannot create archive"])
            members = {source.name: source.read_text()}
            destination.write_text(json.dumps({"password": password, "members": members}))
            source.unlink()  # -df
            return ProcessResult(0, [f"Adding    {source}     OK ", "Done"])

        password = next(a[2:] for a in command if a.startswith("-p"))
        archive, target = Path(command[-2]), Path(command[-1].rstrip(os.sep))
        payload = json.loads(archive.read_text())
        if password != payload["password"]:
            return ProcessResult(11, ["The specified password is incorrect."])
        if code:
            return ProcessResult(code, ["Unexpected end of archive"])

        members = payload["members"]
        if self.archive_members is not None:
            members = {name: "-- data" for name in self.archive_members}
        for name, content in members.items():
            (target / name).write_text(content)
        return ProcessResult(0, ["Extracting  db_dump.sql   OK ", "  45%", "All OK"])


@pytest.fixture
def fake_runner() -> FakeToolRunner:
    return FakeToolRunner()


@pytest.fixture
def tool_dir(tmp_path) -> Path:
    """Directory holding placeholder mysqldump, mysql and rar executables"""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for tool in ("mysqldump", "mysql", "rar"):
        (bin_dir / tool).touch()
    return bin_dir


@pytest.fixture
def settings(tmp_path, tool_dir) -> dict:
    (tmp_path / "cloud").mkdir()
    return {
        "storage": {"local_base": str(tmp_path / "backups"), "temp_dir": str(tmp_path / "work")},
        "backup": {"password": "s3cret-archive", "retention": 4},
        "mysql": {"bin_path": str(tool_dir)},
        "archiver": {"path": str(tool_dir)},
        "datasource": {
            "url": "jdbc:mysql://db.internal:3307/shop",
            "username": "backup_user",
            "password": "db-pass#1",
        },
        "replication": {"root": str(tmp_path / "cloud"), "subdirectory": "Database Backups"},
    }


@pytest.fixture
def make_config(tmp_path):
    """Write settings to a fresh config dir and load them"""

    def _make(data: dict) -> ConfigManager:
        config_dir = tmp_path / "config"
        config_dir.mkdir(exist_ok=True)
        with open(config_dir / "settings.yaml", "w") as f:
            yaml.dump(data, f)
        return ConfigManager(config_dir, platform=PosixPlatform())

    return _make


@pytest.fixture
def config_manager(make_config, settings) -> ConfigManager:
    return make_config(settings)


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def engine(config_manager, fake_runner, events) -> BackupEngine:
    return BackupEngine(
        config_manager,
        runner=fake_runner,
        event_sink=events.append,
        clock=lambda: FIXED_NOW,
        log_to_file=False,
    )
