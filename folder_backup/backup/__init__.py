"""
Backup module for folder-backup.

This module handles the core backup functionality including:
- Source folder enumeration and space checks
- Compression
- Remote storage (FTP/FTPS and SFTP)
- Upload retries
- Retention policy enforcement
- Execution orchestration
"""

from .executor import BackupExecutor, execute_backup
from .sources import list_folders, has_enough_space
from .compression import DirectArchiver, CopyArchiver, create_archiver
from .storage import FTPStorage, SFTPStorage, create_storage
from .retention import RetentionManager
from .retry import retry_call

__all__ = [
    'BackupExecutor',
    'execute_backup',
    'list_folders',
    'has_enough_space',
    'DirectArchiver',
    'CopyArchiver',
    'create_archiver',
    'FTPStorage',
    'SFTPStorage',
    'create_storage',
    'RetentionManager',
    'retry_call'
]
