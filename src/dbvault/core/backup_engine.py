"""Core Backup Engine for dbvault"""

import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..utils.events import EventReporter, EventSink
from ..utils.platform_paths import PlatformPaths
from ..utils.process_runner import ProcessRunner
from ..utils.replication import DEFAULT_REPLICA_SUBDIRECTORY, ReplicationAdapter
from ..utils.retention_manager import PruneReport, RetentionManager
from .archive_cipher import ARCHIVER_TIMEOUT, ArchiveCipher
from .config_manager import ConfigManager
from .credentials import CredentialStaging, StagedCredentialFile
from .exceptions import BackupError, OperationInProgress, PrerequisiteMissing, ReplicationFailed
from .models import ARCHIVE_EXTENSION, SNAPSHOT_EXTENSION, BackupArchive, DatabaseConnectionProfile, archive_name
from .mysql_client import MYSQL_RESTORE_TIMEOUT, MYSQLDUMP_TIMEOUT, DatabaseDumpClient, DatabaseRestoreClient

SNAPSHOT_PREFIX = "db_dump_"
RESTORE_DIR_PREFIX = "restore_"

LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB max per log file
LOG_BACKUP_COUNT = 5  # Number of rotated log files to keep
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class BackupState(str, Enum):
    """States of a backup or restore run"""

    IDLE = "idle"
    PREPARING = "preparing"
    DUMPING = "dumping"
    ENCRYPTING = "encrypting"
    REPLICATING = "replicating"
    PRUNING = "pruning"
    RESTORE_PREPARING = "restore_preparing"
    EXTRACTING = "extracting"
    RESTORING = "restoring"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({BackupState.DONE, BackupState.FAILED})

TRANSITIONS: dict[BackupState, frozenset[BackupState]] = {
    BackupState.IDLE: frozenset({BackupState.PREPARING, BackupState.RESTORE_PREPARING}),
    BackupState.PREPARING: frozenset({BackupState.DUMPING}),
    BackupState.DUMPING: frozenset({BackupState.ENCRYPTING}),
    BackupState.ENCRYPTING: frozenset({BackupState.REPLICATING}),
    BackupState.REPLICATING: frozenset({BackupState.PRUNING}),
    BackupState.PRUNING: frozenset({BackupState.DONE}),
    BackupState.RESTORE_PREPARING: frozenset({BackupState.EXTRACTING}),
    BackupState.EXTRACTING: frozenset({BackupState.RESTORING}),
    BackupState.RESTORING: frozenset({BackupState.DONE}),
    BackupState.DONE: frozenset(),
    BackupState.FAILED: frozenset(),
}


def can_transition(current: BackupState, target: BackupState) -> bool:
    """FAILED is reachable from every non-terminal state"""
    if target is BackupState.FAILED:
        return current not in TERMINAL_STATES
    return target in TRANSITIONS[current]


@dataclass
class OperationResult:
    """Outcome of one CreateBackup or RestoreBackup run"""

    operation: str
    success: bool
    message: str
    state: BackupState
    error_kind: str | None = None
    archive: Path | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class _RunContext:
    profile: DatabaseConnectionProfile
    staging: CredentialStaging
    cipher: ArchiveCipher
    password: str | None = None
    dumper: DatabaseDumpClient | None = None
    restorer: DatabaseRestoreClient | None = None


def setup_logging(log_dir: Path, console_level: int | None = None) -> logging.Logger:
    """Attach a rotating file handler (and optionally a console handler) to the package logger once"""
    logger = logging.getLogger("dbvault")
    logger.setLevel(logging.INFO)

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = (log_dir / "backup.log").resolve()
    formatter = logging.Formatter(LOG_FORMAT)

    # Rotating file handler (10MB max, keep 5 backup files)
    if not any(isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file for h in logger.handlers):
        fh = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    if console_level is not None and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setLevel(console_level)
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    return logger


class BackupEngine:
    """Sequences credential staging, dump, encryption, replication and retention

    One engine runs one operation at a time: a second create or restore call
    while one is running is rejected with an OperationInProgress result.
    `BackgroundBackupManager` keeps calls off the UI thread.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        runner: ProcessRunner | None = None,
        event_sink: EventSink | None = None,
        platform: PlatformPaths | None = None,
        clock: Callable[[], datetime] = datetime.now,
        log_to_file: bool = True,
    ):
        self.config = config_manager
        self.platform = platform or config_manager.platform
        self.runner = runner or ProcessRunner()
        self.clock = clock

        local_path = self.config.get_storage_paths()["local"]
        assert local_path is not None, "Local storage path must be configured"
        self.local_path: Path = local_path
        self.sync_path: Path | None = self.config.get_storage_paths()["sync"]
        self.temp_dir: Path | None = self.config.get_temp_dir()

        if log_to_file:
            setup_logging(self.local_path / "logs")
        self.logger = logging.getLogger("dbvault.BackupEngine")
        self.reporter = EventReporter(self.logger, event_sink)
        self.retention = RetentionManager(self.reporter.child("RetentionManager"))
        self.state = BackupState.IDLE
        self._active = threading.Lock()

    @property
    def event_sink(self) -> EventSink | None:
        return self.reporter.sink

    @event_sink.setter
    def event_sink(self, sink: EventSink | None) -> None:
        self.reporter.sink = sink
        self.retention.reporter.sink = sink

    # ==================== State handling ====================

    def _transition(self, target: BackupState) -> None:
        """Move to `target`, rejecting anything the transition table forbids"""
        if not can_transition(self.state, target):
            raise RuntimeError(f"Illegal state transition {self.state.value} -> {target.value}")
        self.state = target
        self.reporter.state_changed(target.value)

    def _begin(self) -> None:
        """Reset to IDLE at the start of a run"""
        self.state = BackupState.IDLE
        self.reporter.state_changed(BackupState.IDLE.value)

    def _fail(self, operation: str, error: Exception) -> OperationResult:
        """Move to FAILED and turn `error` into a failed result"""
        if isinstance(error, BackupError):
            kind, message = error.kind, error.message
        else:
            kind, message = type(error).__name__, str(error) or type(error).__name__
            self.logger.error(f"Unexpected error during {operation}", exc_info=error)

        if self.state not in TERMINAL_STATES:
            self._transition(BackupState.FAILED)
        self.reporter.error(f"{operation.capitalize()} failed: {message}")
        return OperationResult(operation, False, message, BackupState.FAILED, error_kind=kind)

    # ==================== Preparation ====================

    def _check_executable(self, path: Path, description: str, setting: str) -> None:
        """Raise PrerequisiteMissing if the tool or its directory is absent"""
        if not path.parent.is_dir():
            raise PrerequisiteMissing(f"{description} directory not found: {path.parent}. Please update '{setting}'.")
        if not path.is_file():
            raise PrerequisiteMissing(f"{description} executable not found: {path}")

    def _prepare(self, for_backup: bool) -> _RunContext:
        """Validate configuration and build the components for one run

        Raises:
            PrerequisiteMissing: anything required is absent; nothing has been spawned yet
        """
        archiver_dir = self.config.get_archiver_path()
        if archiver_dir is None:
            raise PrerequisiteMissing("Archiver path not configured. Please set 'archiver.path' in settings.yaml")

        password = None
        if for_backup:
            password = self.config.get_backup_password()
            if not password:
                raise PrerequisiteMissing("Backup password not configured. Please set 'backup.password' in settings.yaml")

        cipher = ArchiveCipher(
            archiver_dir,
            runner=self.runner,
            platform=self.platform,
            reporter=self.reporter.child("ArchiveCipher"),
            timeout=self.config.get_timeout("archiver", ARCHIVER_TIMEOUT),
        )
        self._check_executable(cipher.executable, "Archiver", "archiver.path")

        if self.temp_dir is not None:
            try:
                self.temp_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PrerequisiteMissing(f"Cannot create temp directory {self.temp_dir}: {e}") from e

        bin_dir = self.config.get_mysql_bin_path()
        context = _RunContext(
            profile=self.config.get_connection_profile(),
            staging=CredentialStaging(self.temp_dir, self.platform, self.reporter.child("CredentialStaging")),
            cipher=cipher,
            password=password,
        )

        if for_backup:
            context.dumper = DatabaseDumpClient(
                bin_dir,
                timeout=self.config.get_timeout("mysqldump", MYSQLDUMP_TIMEOUT),
                runner=self.runner,
                platform=self.platform,
                reporter=self.reporter.child("DatabaseDumpClient"),
            )
            self._check_executable(context.dumper.executable, "MySQL bin", "mysql.bin_path")
            try:
                self.local_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PrerequisiteMissing(f"Cannot create backup directory {self.local_path}: {e}") from e
        else:
            context.restorer = DatabaseRestoreClient(
                bin_dir,
                timeout=self.config.get_timeout("mysql_restore", MYSQL_RESTORE_TIMEOUT),
                runner=self.runner,
                platform=self.platform,
                reporter=self.reporter.child("DatabaseRestoreClient"),
            )
            self._check_executable(context.restorer.executable, "MySQL bin", "mysql.bin_path")

        return context

    def _new_archive_path(self, database: str) -> Path:
        """Timestamped archive path that does not exist yet"""
        now = self.clock()
        suffix = 0
        path = self.local_path / archive_name(database, now)
        while path.exists():
            suffix += 1
            path = self.local_path / archive_name(database, now, suffix)
        return path

    def _new_snapshot_path(self) -> Path:
        fd, temp_path = tempfile.mkstemp(
            prefix=SNAPSHOT_PREFIX, suffix=SNAPSHOT_EXTENSION, dir=str(self.temp_dir) if self.temp_dir else None
        )
        os.close(fd)
        return Path(temp_path)

    def _remove_file(self, path: Path | None, description: str) -> None:
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self.reporter.warning(f"Failed to delete {description} {path}: {e}")

    def _remove_directory(self, path: Path | None) -> None:
        if path is None or not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            self.reporter.warning(f"Failed to cleanup temp directory {path}: {e}")

    # ==================== Operations ====================

    def validate_configuration(self) -> list[tuple[str, bool, str]]:
        """Startup check of every configured path; logs, never raises

        Returns:
            List of (item, ok, message)
        """
        results: list[tuple[str, bool, str]] = []

        def record(item: str, ok: bool, message: str) -> None:
            results.append((item, ok, message))
            if ok:
                self.reporter.info(message)
            else:
                self.reporter.error(message)

        bin_dir = self.config.get_mysql_bin_path()
        if bin_dir.is_dir():
            record("mysql_bin", True, f"MySQL bin path validated: {bin_dir}")
            for tool in ("mysqldump", "mysql"):
                exe = self.platform.executable(bin_dir, tool)
                if not exe.is_file():
                    record(tool, False, f"{tool} not found: {exe}")
        else:
            record("mysql_bin", False, f"MySQL bin directory not found: {bin_dir}. Please update 'mysql.bin_path'")

        archiver_dir = self.config.get_archiver_path()
        if archiver_dir is None:
            record("archiver", False, "Archiver path not configured. Please set 'archiver.path'")
        else:
            exe = self.platform.archiver(archiver_dir)
            if exe.is_file():
                record("archiver", True, f"Archiver path validated: {archiver_dir}")
            else:
                record("archiver", False, f"Archiver executable not found: {exe}")

        try:
            has_password = bool(self.config.get_backup_password())
        except PrerequisiteMissing as e:
            record("password", False, e.message)
        else:
            if has_password:
                record("password", True, "Backup password configured")
            else:
                record("password", False, "Backup password not configured. Please set 'backup.password'")

        try:
            profile = self.config.get_connection_profile()
            record("datasource", True, f"Database '{profile.database}' on {profile.host}")
        except PrerequisiteMissing as e:
            record("datasource", False, e.message)

        if self.sync_path is None:
            record("replication", True, "Replication root not configured (cloud sync disabled)")
        elif self.sync_path.is_dir():
            record("replication", True, f"Replication root available: {self.sync_path}")
        else:
            results.append(("replication", False, f"Replication root not accessible: {self.sync_path}"))
            self.reporter.warning(results[-1][2])

        return results

    def list_backups(self) -> list[BackupArchive]:
        """Archives in the local backup directory, newest first"""
        archives = self.retention.list_archives(self.local_path)
        self.logger.info(f"Found {len(archives)} backup file(s)")
        return archives

    def prune_local(self, keep: int | None = None) -> PruneReport:
        return self.retention.prune(self.local_path, keep or self.config.get_retention_count(), label="local")

    def _reject(self, operation: str) -> OperationResult:
        """Result for a call made while another operation holds the engine"""
        error = OperationInProgress(f"Cannot start {operation}: a backup or restore is already running")
        self.reporter.warning(error.message)
        return OperationResult(operation, False, error.message, self.state, error_kind=error.kind)

    def create_backup(self) -> OperationResult:
        """Dump, encrypt, replicate and prune; returns the outcome, never raises"""
        if not self._active.acquire(blocking=False):
            return self._reject("backup")
        try:
            return self._run_backup()
        finally:
            self._active.release()

    def _run_backup(self) -> OperationResult:
        self._begin()
        staged: StagedCredentialFile | None = None
        snapshot: Path | None = None
        archive_path: Path | None = None
        archive_complete = False
        warnings: list[str] = []

        try:
            self.reporter.info("Starting backup process...")
            self._transition(BackupState.PREPARING)
            context = self._prepare(for_backup=True)
            assert context.dumper is not None and context.password is not None
            archive_path = self._new_archive_path(context.profile.database)
            snapshot = self._new_snapshot_path()
            staged = context.staging.stage(context.profile, for_dump=True)

            self._transition(BackupState.DUMPING)
            context.dumper.dump(context.profile, staged, snapshot)
            staged.release()

            self._transition(BackupState.ENCRYPTING)
            context.cipher.encrypt(snapshot, context.password, archive_path)
            archive_complete = True
            archive = BackupArchive.from_path(archive_path)
            self.reporter.success(f"Backup created successfully: {archive.name}")

            keep = self.config.get_retention_count()

            self._transition(BackupState.REPLICATING)
            warnings.extend(self._replicate(archive, keep))

            self._transition(BackupState.PRUNING)
            warnings.extend(self._prune_after_backup(keep))

            self._transition(BackupState.DONE)
            message = f"Backup process completed: {archive.name} ({archive.display_size})"
            if warnings:
                message += f" with {len(warnings)} warning(s)"
            self.reporter.success(message)
            return OperationResult("backup", True, message, BackupState.DONE, archive=archive_path, warnings=warnings)

        except Exception as e:
            return self._fail("backup", e)

        finally:
            if staged is not None:
                staged.release()
            self._remove_file(snapshot, "working snapshot")
            if archive_path is not None and not archive_complete:
                self._remove_file(archive_path, "partial archive")

    def _replicate(self, archive: BackupArchive, keep: int) -> list[str]:
        adapter = ReplicationAdapter(
            retention=self.retention,
            subdirectory=self.config.get_replication_subdirectory() or DEFAULT_REPLICA_SUBDIRECTORY,
            keep=keep,
            reporter=self.reporter.child("ReplicationAdapter"),
        )
        try:
            result = adapter.replicate(archive, self.sync_path)
        except ReplicationFailed as e:
            self.reporter.error(e.message)
            return [e.message]
        except OSError as e:
            # Retention on the replica folder hit an unreadable directory
            message = f"Replication cleanup failed: {e}"
            self.reporter.error(message)
            return [message]

        if result.skipped:
            return [result.skipped_reason or "Replication skipped"]
        if result.prune_report is not None:
            return [f.message for f in result.prune_report.failed]
        return []

    def _prune_after_backup(self, keep: int) -> list[str]:
        try:
            report = self.retention.prune(self.local_path, keep, label="local")
        except OSError as e:
            message = f"Cleanup error in local: {e}"
            self.reporter.error(message)
            return [message]
        return [f.message for f in report.failed]

    def restore_backup(self, archive: str | Path, password: str) -> OperationResult:
        """Decrypt `archive` and replay it into the configured database

        Overwrites the current database contents. Never raises.
        """
        if not self._active.acquire(blocking=False):
            return self._reject("restore")
        try:
            return self._run_restore(archive, password)
        finally:
            self._active.release()

    def _run_restore(self, archive: str | Path, password: str) -> OperationResult:
        self._begin()
        staged: StagedCredentialFile | None = None
        extract_dir: Path | None = None
        archive_path = Path(archive)
        if not archive_path.is_absolute() and not archive_path.exists():
            archive_path = self.local_path / archive_path

        try:
            self.reporter.info("Starting restore process...")
            self.reporter.info(f"Backup file: {archive_path.name}")
            self._transition(BackupState.RESTORE_PREPARING)

            if archive_path.suffix != ARCHIVE_EXTENSION:
                raise PrerequisiteMissing(f"Not an encrypted backup file ({ARCHIVE_EXTENSION}): {archive_path.name}")
            if not archive_path.is_file():
                raise PrerequisiteMissing(f"Backup file not found: {archive_path}")
            if not password:
                raise PrerequisiteMissing("No password provided for the backup archive")

            context = self._prepare(for_backup=False)
            assert context.restorer is not None
            staged = context.staging.stage(context.profile, for_dump=False)
            extract_dir = Path(
                tempfile.mkdtemp(prefix=RESTORE_DIR_PREFIX, dir=str(self.temp_dir) if self.temp_dir else None)
            )

            self._transition(BackupState.EXTRACTING)
            snapshot = context.cipher.decrypt(archive_path, password, extract_dir)

            self._transition(BackupState.RESTORING)
            context.restorer.restore(context.profile, staged, snapshot)

            self._transition(BackupState.DONE)
            message = f"Database restored successfully from: {archive_path.name}"
            self.reporter.success(message)
            return OperationResult("restore", True, message, BackupState.DONE, archive=archive_path)

        except Exception as e:
            return self._fail("restore", e)

        finally:
            if staged is not None:
                staged.release()
            self._remove_directory(extract_dir)
