"""mysqldump / mysql invocations used for snapshots and restores"""

import logging
import subprocess
from pathlib import Path

from ..utils.events import EventReporter
from ..utils.platform_paths import PlatformPaths, detect_platform
from ..utils.process_runner import ProcessRunner
from .credentials import StagedCredentialFile
from .exceptions import DumpFailed, RestoreFailed
from .models import DatabaseConnectionProfile, format_file_size

# Subprocess timeout constants (seconds)
MYSQLDUMP_TIMEOUT = 3600  # 1 hour for database dumps
MYSQL_RESTORE_TIMEOUT = 7200  # 2 hours for database restores

# Consistent snapshot including routines/triggers/events, blob-safe, no GTID info
DUMP_OPTIONS = [
    "--single-transaction",
    "--routines",
    "--triggers",
    "--events",
    "--hex-blob",
    "--set-gtid-purged=OFF",
]


class _MySQLTool:
    tool_name = ""

    def __init__(
        self,
        bin_dir: str | Path,
        runner: ProcessRunner | None = None,
        platform: PlatformPaths | None = None,
        reporter: EventReporter | None = None,
        timeout: int | None = None,
    ):
        self.bin_dir = Path(bin_dir)
        self.runner = runner or ProcessRunner()
        self.platform = platform or detect_platform()
        self.reporter = reporter or EventReporter(logging.getLogger(f"dbvault.{self.__class__.__name__}"))
        self.timeout = timeout

    @property
    def executable(self) -> Path:
        return self.platform.executable(self.bin_dir, self.tool_name)

    def _log_output(self, lines: list[str]) -> None:
        for line in lines:
            if line.strip():
                self.reporter.info(f"{self.tool_name}: {line.rstrip()}")


class DatabaseDumpClient(_MySQLTool):
    """Export a database to a plain SQL file with mysqldump"""

    tool_name = "mysqldump"

    def __init__(self, bin_dir: str | Path, timeout: int = MYSQLDUMP_TIMEOUT, **kwargs):
        super().__init__(bin_dir, timeout=timeout, **kwargs)

    def build_command(self, profile: DatabaseConnectionProfile, staged: StagedCredentialFile) -> list[str]:
        return [
            str(self.executable),
            f"--defaults-extra-file={staged.path.resolve()}",
            *DUMP_OPTIONS,
            profile.database,
        ]

    def dump(self, profile: DatabaseConnectionProfile, staged: StagedCredentialFile, destination: Path) -> None:
        """Stream the dump of `profile.database` into `destination`

        Raises:
            DumpFailed: mysqldump could not run, timed out or exited non-zero
        """
        self.reporter.info("Exporting database to SQL file...")
        command = self.build_command(profile, staged)

        try:
            result = self.runner.run(command, stdout=destination, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise DumpFailed(f"mysqldump timed out after {self.timeout}s") from e
        except OSError as e:
            raise DumpFailed(f"Could not run {self.executable}: {e}") from e

        self._log_output(result.lines)

        if result.returncode != 0:
            raise DumpFailed(f"mysqldump failed with exit code: {result.returncode}", exit_code=result.returncode)

        size = destination.stat().st_size if destination.exists() else 0
        self.reporter.info(f"Database export completed: {format_file_size(size)}")


class DatabaseRestoreClient(_MySQLTool):
    """Replay a SQL snapshot into the target database with the mysql client

    Not transactional: a failure part-way leaves the statements applied so
    far in place.
    """

    tool_name = "mysql"

    def __init__(self, bin_dir: str | Path, timeout: int = MYSQL_RESTORE_TIMEOUT, **kwargs):
        super().__init__(bin_dir, timeout=timeout, **kwargs)

    def build_command(self, profile: DatabaseConnectionProfile, staged: StagedCredentialFile) -> list[str]:
        return [str(self.executable), f"--defaults-extra-file={staged.path.resolve()}", profile.database]

    def restore(self, profile: DatabaseConnectionProfile, staged: StagedCredentialFile, source: Path) -> None:
        """Feed `source` to mysql's stdin

        Raises:
            RestoreFailed: mysql could not run, timed out or exited non-zero
        """
        self.reporter.info("Restoring database from SQL file...")
        command = self.build_command(profile, staged)

        try:
            result = self.runner.run(command, stdin=source, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise RestoreFailed(f"mysql restore timed out after {self.timeout}s") from e
        except OSError as e:
            raise RestoreFailed(f"Could not run {self.executable}: {e}") from e

        self._log_output(result.lines)

        if result.returncode != 0:
            raise RestoreFailed(
                f"Database restore failed with exit code: {result.returncode}", exit_code=result.returncode
            )

        self.reporter.info("Database restore completed successfully")
