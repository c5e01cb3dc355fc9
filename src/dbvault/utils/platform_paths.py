"""Platform-specific executable names, default paths and file permissions"""

import logging
import os
import stat
from pathlib import Path


class PlatformPaths:
    """Base platform; subclasses override naming and permission handling"""

    name = "generic"
    executable_suffix = ""
    archiver_executable = "rar"
    default_mysql_bin = "/usr/bin"

    def executable(self, bin_dir: str | Path, tool: str) -> Path:
        """Full path of `tool` inside `bin_dir` with the platform suffix"""
        return Path(bin_dir) / f"{tool}{self.executable_suffix}"

    def archiver(self, archiver_dir: str | Path) -> Path:
        return Path(archiver_dir) / self.archiver_executable

    def restrict_permissions(self, path: Path) -> bool:
        """Limit `path` to owner read/write. Returns False if unsupported."""
        return False


class PosixPlatform(PlatformPaths):
    name = "posix"

    def restrict_permissions(self, path: Path) -> bool:
        try:
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
        except (NotImplementedError, PermissionError) as e:
            logging.getLogger("dbvault.PlatformPaths").debug(f"chmod not supported for {path}: {e}")
            return False
        return True


class WindowsPlatform(PlatformPaths):
    name = "windows"
    executable_suffix = ".exe"
    archiver_executable = "Rar.exe"
    default_mysql_bin = r"C:\Program Files\MySQL\MySQL Server 8.0\bin"


def detect_platform() -> PlatformPaths:
    """Select the platform variant once for the running interpreter"""
    if os.name == "nt":
        return WindowsPlatform()
    return PosixPlatform()
