"""Error taxonomy for backup and restore operations"""

from typing import Any


class BackupError(Exception):
    """Base class for every error raised by a backup or restore step"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return self.__class__.__name__


class PrerequisiteMissing(BackupError):
    """Configuration is incomplete; raised before any external process is spawned"""


class OperationInProgress(BackupError):
    """Another backup or restore is already running on this manager"""


class ExternalToolError(BackupError):
    """An external tool exited with a non-zero code or could not be run"""

    def __init__(self, message: str, exit_code: int | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.exit_code = exit_code


class DumpFailed(ExternalToolError):
    """mysqldump failed"""


class RestoreFailed(ExternalToolError):
    """mysql client failed while applying a snapshot"""


class ArchiveToolFailed(ExternalToolError):
    """rar failed for a reason other than a bad password"""


class InvalidPasswordOrCorruptArchive(ExternalToolError):
    """rar rejected the password or found the archive damaged"""


class NoSnapshotInArchive(BackupError):
    """Extraction succeeded but produced no SQL snapshot"""


class ReplicationFailed(BackupError):
    """Copying an archive to the replication root failed (never fatal)"""


class PruneEntryFailed(BackupError):
    """A single expired archive could not be deleted (never fatal)"""

    def __init__(self, message: str, path: str, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.path = path
