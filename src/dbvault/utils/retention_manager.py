"""Count-based retention: keep the newest N archives in a storage location"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..core.exceptions import PruneEntryFailed
from ..core.models import ARCHIVE_EXTENSION, BackupArchive
from .events import EventReporter

DEFAULT_KEEP = 4


@dataclass
class PruneReport:
    """Outcome of one retention pass over a location"""

    location: Path
    kept: list[BackupArchive] = field(default_factory=list)
    deleted: list[BackupArchive] = field(default_factory=list)
    failed: list[PruneEntryFailed] = field(default_factory=list)

    @property
    def warning_count(self) -> int:
        return len(self.failed)


class RetentionManager:
    """Manage the kept/expired split of archives per storage location"""

    def __init__(self, reporter: EventReporter | None = None, extension: str = ARCHIVE_EXTENSION):
        self.reporter = reporter or EventReporter(logging.getLogger("dbvault.RetentionManager"))
        self.extension = extension

    def list_archives(self, location: Path) -> list[BackupArchive]:
        """Regular archive files in `location`, newest first"""
        if not location.is_dir():
            return []

        archives = []
        for path in location.iterdir():
            if path.is_symlink() or not path.is_file() or path.suffix != self.extension:
                continue
            try:
                archives.append(BackupArchive.from_path(path))
            except OSError as e:
                # Vanished between listing and stat
                self.reporter.logger.debug(f"Skipping {path.name}: {e}")

        archives.sort(key=lambda a: (a.modified, a.name), reverse=True)
        return archives

    def prune(self, location: Path, keep: int = DEFAULT_KEEP, label: str | None = None) -> PruneReport:
        """Delete every archive beyond the `keep` most recent

        Args:
            location: Directory holding the archives
            keep: Number of newest archives to keep (at least 1)
            label: Name of the location for log lines (defaults to the path)

        Returns:
            PruneReport; individual deletion failures are collected, not raised
        """
        if keep < 1:
            raise ValueError(f"Retention count must be at least 1, got {keep}")

        label = label or str(location)
        report = PruneReport(location=location)

        if not location.is_dir():
            self.reporter.info(f"No cleanup needed in {label} (location does not exist)")
            return report

        self.reporter.info(f"Cleaning up old backups from {label}...")
        archives = self.list_archives(location)
        report.kept = archives[:keep]
        expired = archives[keep:]

        if not expired:
            self.reporter.info(f"No cleanup needed in {label} ({len(archives)} backup(s) found)")
            return report

        self.reporter.info(f"Keeping {keep} newest backups, deleting {len(expired)} old backup(s) from {label}")

        for archive in expired:
            try:
                archive.path.unlink(missing_ok=True)
                report.deleted.append(archive)
                self.reporter.info(f"Deleted old backup: {archive.name}")
            except OSError as e:
                report.failed.append(PruneEntryFailed(f"Failed to delete {archive.name}: {e}", path=str(archive.path)))
                self.reporter.error(f"Failed to delete {archive.name}: {e}")

        if report.failed:
            self.reporter.warning(f"{report.warning_count} old backup(s) could not be deleted from {label}")

        return report
