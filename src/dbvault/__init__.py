"""dbvault - encrypted MySQL backups with replication and retention"""

__version__ = "1.0.0"
