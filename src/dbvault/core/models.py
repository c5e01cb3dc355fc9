"""Value objects shared by the backup components"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

ARCHIVE_EXTENSION = ".rar"
SNAPSHOT_EXTENSION = ".sql"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_ARCHIVE_NAME_RE = re.compile(
    r"^(?P<database>.+)_backup_(?P<timestamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:_\d+)?" + re.escape(ARCHIVE_EXTENSION) + "$"
)


@dataclass(frozen=True)
class DatabaseConnectionProfile:
    """Connection parameters for one backup or restore run"""

    host: str
    database: str
    username: str
    password: str = field(repr=False)
    port: int | None = None


def archive_name(database: str, when: datetime, suffix: int = 0) -> str:
    """Build `{database}_backup_{timestamp}.rar`, with `_N` appended when suffix > 0"""
    stem = f"{database}_backup_{when.strftime(TIMESTAMP_FORMAT)}"
    if suffix:
        stem = f"{stem}_{suffix}"
    return stem + ARCHIVE_EXTENSION


def format_file_size(size: int) -> str:
    """Format a byte count as e.g. '1.50 MB'"""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    unit = units[0]
    for unit in units:
        if value < 1024 or unit == units[-1]:
            break
        value /= 1024
    return f"{value:.2f} {unit}"


@dataclass(frozen=True)
class BackupArchive:
    """A completed encrypted snapshot on a storage location"""

    path: Path
    size: int
    modified: datetime

    @classmethod
    def from_path(cls, path: Path) -> "BackupArchive":
        stat = path.stat()
        return cls(path=path, size=stat.st_size, modified=datetime.fromtimestamp(stat.st_mtime))

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def database(self) -> str | None:
        """Database name embedded in the file name, None for foreign names"""
        match = _ARCHIVE_NAME_RE.match(self.path.name)
        return match.group("database") if match else None

    @property
    def created(self) -> datetime | None:
        match = _ARCHIVE_NAME_RE.match(self.path.name)
        if not match:
            return None
        return datetime.strptime(match.group("timestamp"), TIMESTAMP_FORMAT)

    @property
    def display_size(self) -> str:
        return format_file_size(self.size)

    @property
    def display_date(self) -> str:
        return self.modified.strftime("%Y-%m-%d %H:%M:%S")
