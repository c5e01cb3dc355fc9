"""Basic smoke tests to verify imports work correctly."""


def test_core_imports():
    """Test that core modules can be imported."""
    from dbvault.core.archive_cipher import ArchiveCipher
    from dbvault.core.backup_engine import BackupEngine
    from dbvault.core.config_manager import ConfigManager
    from dbvault.core.credentials import CredentialStaging
    from dbvault.core.mysql_client import DatabaseDumpClient, DatabaseRestoreClient

    assert ArchiveCipher is not None
    assert BackupEngine is not None
    assert ConfigManager is not None
    assert CredentialStaging is not None
    assert DatabaseDumpClient is not None
    assert DatabaseRestoreClient is not None


def test_utils_imports():
    """Test that utility modules can be imported."""
    from dbvault.utils.background_backup import BackgroundBackupManager
    from dbvault.utils.replication import ReplicationAdapter
    from dbvault.utils.retention_manager import RetentionManager

    assert BackgroundBackupManager is not None
    assert ReplicationAdapter is not None
    assert RetentionManager is not None


def test_cli_import():
    from dbvault.cli import cli

    assert cli.name == "cli"
