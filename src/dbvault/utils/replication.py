"""Best-effort copy of fresh archives to a secondary (cloud-sync) folder"""

import logging
import os
import shutil
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from ..core.exceptions import ReplicationFailed
from ..core.models import BackupArchive
from .events import EventReporter
from .retention_manager import DEFAULT_KEEP, PruneReport, RetentionManager

DEFAULT_REPLICA_SUBDIRECTORY = "Database Backups"


@dataclass
class ReplicationResult:
    """Where the archive went, or why it did not go anywhere"""

    destination: Path | None = None
    skipped_reason: str | None = None
    prune_report: PruneReport | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class ReplicationAdapter:
    """Copy archives under `<remote_root>/<subdirectory>` and apply retention there"""

    def __init__(
        self,
        retention: RetentionManager | None = None,
        subdirectory: str = DEFAULT_REPLICA_SUBDIRECTORY,
        keep: int = DEFAULT_KEEP,
        reporter: EventReporter | None = None,
    ):
        self.reporter = reporter or EventReporter(logging.getLogger("dbvault.ReplicationAdapter"))
        self.retention = retention or RetentionManager(self.reporter.child("RetentionManager"))
        self.subdirectory = subdirectory
        self.keep = keep

    def replicate(self, archive: BackupArchive, remote_root: Path | None) -> ReplicationResult:
        """Copy `archive` to the replica folder

        A missing or unset root is a skip, not an error.

        Raises:
            ReplicationFailed: the root exists but the copy failed
        """
        self.reporter.info("Attempting to sync backup to replication folder...")

        if remote_root is None:
            reason = "Replication root not configured. Skipping cloud sync."
            self.reporter.warning(reason)
            return ReplicationResult(skipped_reason=reason)

        if not remote_root.is_dir():
            reason = f"Replication root not accessible ({remote_root}). Skipping cloud sync."
            self.reporter.warning(reason)
            return ReplicationResult(skipped_reason=reason)

        replica_dir = remote_root / self.subdirectory
        destination = replica_dir / archive.name
        partial = replica_dir / f".{archive.name}.part"

        try:
            replica_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(archive.path, partial)
            os.replace(partial, destination)
        except OSError as e:
            with suppress(OSError):
                partial.unlink(missing_ok=True)
            raise ReplicationFailed(f"Failed to sync backup to {replica_dir}: {e}") from e

        self.reporter.success(f"Backup synced to replication folder: {destination}")

        prune_report = self.retention.prune(replica_dir, self.keep, label="replication folder")
        return ReplicationResult(destination=destination, prune_report=prune_report)
