"""Configuration Manager for dbvault"""

import logging
import os
import re
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

import yaml
from cryptography.fernet import Fernet, InvalidToken

from ..utils.platform_paths import PlatformPaths, detect_platform
from .exceptions import PrerequisiteMissing
from .models import DatabaseConnectionProfile

DEFAULT_MYSQL_HOST = "127.0.0.1"
DEFAULT_MYSQL_USER = "root"
DEFAULT_RETENTION_COUNT = 4
DEFAULT_LOCAL_BASE = Path.home() / "backups" / "dbvault"

ENCRYPTED_PREFIX = "enc:"
SECRET_KEYS = ("backup.password", "datasource.password")

_SUPPORTED_SCHEMES = ("mysql", "mariadb")


def validate_identifier(name: str, identifier_type: str = "name") -> str:
    """Validate database names before they reach a command line"""
    if not re.match(r"^[a-zA-Z0-9_\-\.]+$", name):
        raise PrerequisiteMissing(
            f"Invalid {identifier_type}: '{name}'. Only alphanumeric characters, underscores, hyphens, and dots allowed."
        )
    return name


def parse_connection_url(url: str) -> dict[str, Any]:
    """Split a `jdbc:mysql://` or `mysql://` URL into its parts

    Returns:
        Dict with host, port, database, username and password (None when absent)
    """
    raw = url.strip()
    if raw.startswith("jdbc:"):
        raw = raw[len("jdbc:") :]

    parsed = urlsplit(raw)
    if parsed.scheme not in _SUPPORTED_SCHEMES:
        raise PrerequisiteMissing(f"Unsupported connection string: {url!r} (expected mysql://host[:port]/database)")

    try:
        port = parsed.port
    except ValueError as e:
        raise PrerequisiteMissing(f"Invalid port in connection string: {e}") from e

    database = parsed.path.lstrip("/").split("/")[0] or None
    return {
        "host": parsed.hostname or DEFAULT_MYSQL_HOST,
        "port": port,
        "database": database,
        "username": unquote(parsed.username) if parsed.username else None,
        "password": unquote(parsed.password) if parsed.password else None,
    }


class ConfigManager:
    """Loads settings.yaml and resolves paths, secrets and connection profiles"""

    def __init__(self, config_dir: str | Path | None = None, platform: PlatformPaths | None = None):
        default_dir = os.environ.get("DBVAULT_CONFIG_DIR") or Path(__file__).parents[3] / "config"
        self.config_dir = Path(config_dir or default_dir)
        self.settings_file = self.config_dir / "settings.yaml"
        self.platform = platform or detect_platform()
        self.logger = logging.getLogger("dbvault.ConfigManager")

        # Check if config files exist, guide user to setup if not
        self._check_config_exists()

        # Initialize encryption key for secrets
        self._init_encryption()

        self.settings = self._load_yaml(self.settings_file)

        # Encrypt plaintext secrets on first run
        self._encrypt_passwords()

    def _check_config_exists(self) -> None:
        """Check if the settings file exists and provide setup guidance if not"""
        if not self.settings_file.exists():
            example = self.config_dir / "settings.yaml.example"
            if example.exists():
                logging.error(
                    "Configuration not found. Copy the example config and edit it:\n"
                    f"  cp {example} {self.settings_file}"
                )
                raise SystemExit(1)

    def _init_encryption(self) -> None:
        """Initialize encryption for sensitive data"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        key_file = self.config_dir / ".encryption_key"

        if key_file.exists():
            # Ensure correct permissions on existing key file
            if os.name != "nt" and os.stat(key_file).st_mode & 0o777 != 0o600:
                os.chmod(key_file, 0o600)
            with open(key_file, "rb") as f:
                self.cipher = Fernet(f.read())
        else:
            # Generate new key with restricted permissions from creation
            key = Fernet.generate_key()
            fd = os.open(str(key_file), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            try:
                os.write(fd, key)
            finally:
                os.close(fd)
            self.cipher = Fernet(key)

    def _load_yaml(self, file_path: Path) -> dict[str, Any]:
        """Load YAML configuration file"""
        if not file_path.exists():
            return {}

        with open(file_path) as f:
            return yaml.safe_load(f) or {}

    def _save_yaml(self, data: dict[str, Any], file_path: Path) -> None:
        """Save configuration to YAML file"""
        with open(file_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def _set_setting(self, key: str, value: Any) -> None:
        """Set a nested setting by dotted key"""
        node = self.settings
        *parents, leaf = key.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value

    def _encrypt_passwords(self) -> None:
        """Encrypt secrets that are still stored in plaintext"""
        modified = False

        for key in SECRET_KEYS:
            value = self.get_setting(key)
            if isinstance(value, str) and value and not value.startswith(ENCRYPTED_PREFIX):
                self._set_setting(key, f"{ENCRYPTED_PREFIX}{self.encrypt_value(value)}")
                modified = True

        if modified:
            self._save_yaml(self.settings, self.settings_file)
            self.logger.info("Encrypted plaintext secrets in settings.yaml")

    def encrypt_value(self, value: str) -> str:
        return self.cipher.encrypt(value.encode()).decode()

    def decrypt_value(self, encrypted: str) -> str:
        if encrypted.startswith(ENCRYPTED_PREFIX):
            encrypted = encrypted[len(ENCRYPTED_PREFIX) :]
        try:
            return self.cipher.decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise PrerequisiteMissing(
                f"Cannot decrypt secret with {self.config_dir / '.encryption_key'} (key changed?)"
            ) from e

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value with optional default

        Args:
            key: Setting key (supports nested keys with dot notation, e.g., 'storage.local_base')
            default: Default value if setting not found

        Returns:
            Setting value or default
        """
        value: Any = self.settings

        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def get_secret(self, key: str) -> str | None:
        value = self.get_setting(key)
        if not value:
            return None
        value = str(value)
        if value.startswith(ENCRYPTED_PREFIX):
            return self.decrypt_value(value)
        return value

    def _get_path(self, key: str) -> Path | None:
        value = self.get_setting(key)
        if not value or not str(value).strip():
            return None
        return Path(str(value)).expanduser()

    def get_storage_paths(self) -> dict[str, Path | None]:
        """Get storage paths from settings

        Returns:
            Dict with 'local' (always set) and 'sync' (None if not configured)
        """
        return {
            "local": self._get_path("storage.local_base") or DEFAULT_LOCAL_BASE,
            "sync": self._get_path("replication.root"),
        }

    def get_temp_dir(self) -> Path | None:
        return self._get_path("storage.temp_dir")

    def get_mysql_bin_path(self) -> Path:
        return self._get_path("mysql.bin_path") or Path(self.platform.default_mysql_bin)

    def get_archiver_path(self) -> Path | None:
        return self._get_path("archiver.path")

    def get_backup_password(self) -> str | None:
        return self.get_secret("backup.password")

    def get_retention_count(self) -> int:
        value = self.get_setting("backup.retention", DEFAULT_RETENTION_COUNT)
        try:
            count = int(value)
        except (TypeError, ValueError):
            count = 0
        if count < 1:
            self.logger.warning(f"Invalid backup.retention '{value}', using {DEFAULT_RETENTION_COUNT}")
            return DEFAULT_RETENTION_COUNT
        return count

    def get_replication_subdirectory(self) -> str | None:
        return self.get_setting("replication.subdirectory")

    def get_timeout(self, name: str, default: int) -> int:
        return int(self.get_setting(f"timeouts.{name}", default))

    def get_connection_profile(self) -> DatabaseConnectionProfile:
        """Resolve host, database and credentials for one operation

        Raises:
            PrerequisiteMissing: no database name or an unusable connection string
        """
        url = self.get_setting("datasource.url", "")
        parts: dict[str, Any] = parse_connection_url(url) if url else {"host": DEFAULT_MYSQL_HOST}

        database = parts.get("database") or self.get_setting("datasource.database")
        if not database:
            raise PrerequisiteMissing("Database name not configured (datasource.url or datasource.database)")

        password = self.get_secret("datasource.password")
        if password is None:
            password = parts.get("password") or ""

        return DatabaseConnectionProfile(
            host=parts.get("host") or DEFAULT_MYSQL_HOST,
            port=parts.get("port"),
            database=validate_identifier(str(database), "database name"),
            username=self.get_setting("datasource.username") or parts.get("username") or DEFAULT_MYSQL_USER,
            password=password,
        )
