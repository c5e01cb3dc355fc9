"""Short-lived MySQL option files carrying connection credentials"""

import logging
import os
import tempfile
from pathlib import Path

from ..utils.events import EventReporter
from ..utils.platform_paths import PlatformPaths, detect_platform
from .models import DatabaseConnectionProfile

CREDENTIAL_PREFIX = "mysql_conf_"
CREDENTIAL_SUFFIX = ".cnf"


def _quote_option(value: str) -> str:
    # Quoted so '#' and ';' are not read as comments
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_option_file(profile: DatabaseConnectionProfile, for_dump: bool) -> str:
    section = "[mysqldump]" if for_dump else "[mysql]"
    lines = [
        section,
        f"user={profile.username}",
        f"password={_quote_option(profile.password)}",
        f"host={profile.host}",
    ]
    if profile.port:
        lines.append(f"port={profile.port}")
    return "\n".join(lines) + "\n"


class StagedCredentialFile:
    """Handle to a staged option file; `release()` removes it"""

    def __init__(self, path: Path, reporter: EventReporter):
        self.path = path
        self._reporter = reporter
        self._released = False

    def release(self) -> None:
        """Delete the file. Failures are logged, never raised."""
        if self._released:
            return
        self._released = True
        try:
            self.path.unlink(missing_ok=True)
            self._reporter.logger.debug("Removed temporary MySQL config file")
        except OSError as e:
            self._reporter.warning(f"Failed to delete temp credential file {self.path}: {e}")

    @property
    def released(self) -> bool:
        return self._released

    def __enter__(self) -> "StagedCredentialFile":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class CredentialStaging:
    """Write connection credentials to owner-only temp files for the MySQL clients"""

    def __init__(
        self,
        temp_dir: Path | None = None,
        platform: PlatformPaths | None = None,
        reporter: EventReporter | None = None,
    ):
        self.temp_dir = temp_dir
        self.platform = platform or detect_platform()
        self.reporter = reporter or EventReporter(logging.getLogger("dbvault.CredentialStaging"))

    def stage(self, profile: DatabaseConnectionProfile, for_dump: bool) -> StagedCredentialFile:
        fd, temp_path = tempfile.mkstemp(
            prefix=CREDENTIAL_PREFIX, suffix=CREDENTIAL_SUFFIX, dir=str(self.temp_dir) if self.temp_dir else None
        )
        path = Path(temp_path)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(render_option_file(profile, for_dump))
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        if not self.platform.restrict_permissions(path):
            self.reporter.warning("Unable to set owner-only permissions on temp config file")

        return StagedCredentialFile(path, self.reporter)
