"""Password-protected RAR archives around SQL snapshots"""

import logging
import os
import subprocess
from pathlib import Path

from ..utils.events import EventReporter
from ..utils.platform_paths import PlatformPaths, detect_platform
from ..utils.process_runner import ProcessResult, ProcessRunner, display_command
from .exceptions import ArchiveToolFailed, InvalidPasswordOrCorruptArchive, NoSnapshotInArchive, PrerequisiteMissing
from .models import SNAPSHOT_EXTENSION, format_file_size

ARCHIVER_TIMEOUT = 3600

# rar exit codes: 3 = CRC error (wrong password on RAR4), 11 = bad password
BAD_PASSWORD_EXIT_CODES = frozenset({3, 11})

_COSMETIC_PREFIXES = ("Extracting", "Adding")


def is_cosmetic(line: str) -> bool:
    """Progress chatter that adds nothing to the audit trail"""
    text = line.replace("\b", "").strip()
    if not text:
        return True
    if text.startswith(_COSMETIC_PREFIXES):
        return True
    return text.rstrip("%").isdigit() and text.endswith("%")


class ArchiveCipher:
    """Encrypt snapshots into RAR5 archives and extract them again

    Archives are created with encrypted headers (file names hidden), maximum
    compression, no stored directory prefix, and the plain source deleted by
    rar itself once archived.
    """

    def __init__(
        self,
        archiver_dir: str | Path,
        runner: ProcessRunner | None = None,
        platform: PlatformPaths | None = None,
        reporter: EventReporter | None = None,
        timeout: int = ARCHIVER_TIMEOUT,
    ):
        self.archiver_dir = Path(archiver_dir)
        self.runner = runner or ProcessRunner()
        self.platform = platform or detect_platform()
        self.reporter = reporter or EventReporter(logging.getLogger("dbvault.ArchiveCipher"))
        self.timeout = timeout

    @property
    def executable(self) -> Path:
        return self.platform.archiver(self.archiver_dir)

    def _run(self, command: list[str], password: str) -> ProcessResult:
        self.reporter.logger.debug(f"Running: {display_command(command, (password,))}")
        try:
            result = self.runner.run(command, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise ArchiveToolFailed(f"Archiver timed out after {self.timeout}s") from e
        except OSError as e:
            raise ArchiveToolFailed(f"Could not run {self.executable}: {e}") from e

        for line in result.lines:
            if not is_cosmetic(line):
                self.reporter.info(f"RAR: {line.strip()}")
        return result

    def encrypt(self, plain_file: Path, password: str, destination: Path) -> None:
        """Archive `plain_file` into `destination`; rar deletes the source on success

        Raises:
            PrerequisiteMissing: empty password
            ArchiveToolFailed: rar exited non-zero or produced nothing
        """
        if not password:
            raise PrerequisiteMissing("Backup password is empty")

        self.reporter.info("Encrypting and compressing backup file...")
        command = [
            str(self.executable),
            "a",
            f"-hp{password}",  # encrypt data and headers
            "-m5",  # maximum compression
            "-ma5",  # RAR5 format
            "-ep1",  # store the file without its directory
            "-df",  # delete source after archiving
            "-y",  # assume yes on all queries
            "-idp",  # no percentage indicator
            str(destination.resolve()),
            str(plain_file.resolve()),
        ]
        result = self._run(command, password)

        if result.returncode != 0:
            raise ArchiveToolFailed(
                f"Archive encryption failed with exit code: {result.returncode}", exit_code=result.returncode
            )
        if not destination.exists():
            raise ArchiveToolFailed(f"Archiver exited cleanly but {destination.name} was not created")

        self.reporter.info(f"Encryption completed: {format_file_size(destination.stat().st_size)}")

    def decrypt(self, archive: Path, password: str, destination_dir: Path) -> Path:
        """Extract `archive` into `destination_dir` and return the SQL snapshot inside

        Raises:
            InvalidPasswordOrCorruptArchive: wrong password or damaged archive
            ArchiveToolFailed: any other rar failure
            NoSnapshotInArchive: extraction produced no .sql file
        """
        if not password:
            raise InvalidPasswordOrCorruptArchive("No password supplied for encrypted archive")

        self.reporter.info("Decrypting and extracting backup file...")
        command = [
            str(self.executable),
            "x",
            f"-p{password}",
            "-o+",  # overwrite existing files
            "-y",
            "-idp",
            str(archive.resolve()),
            str(destination_dir.resolve()) + os.sep,
        ]
        result = self._run(command, password)

        if result.returncode in BAD_PASSWORD_EXIT_CODES:
            raise InvalidPasswordOrCorruptArchive(
                "Invalid password or corrupted archive", exit_code=result.returncode
            )
        if result.returncode != 0:
            raise ArchiveToolFailed(
                f"Archive extraction failed with exit code: {result.returncode}", exit_code=result.returncode
            )

        snapshots = sorted(p for p in destination_dir.rglob(f"*{SNAPSHOT_EXTENSION}") if p.is_file())
        if not snapshots:
            raise NoSnapshotInArchive("No SQL file found in extracted backup")
        if len(snapshots) > 1:
            self.reporter.warning(f"Archive holds {len(snapshots)} SQL files, using {snapshots[0].name}")

        snapshot = snapshots[0]
        self.reporter.info(f"Decryption successful: {format_file_size(snapshot.stat().st_size)}")
        return snapshot
