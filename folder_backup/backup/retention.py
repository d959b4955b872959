"""
Retention policy enforcement for remote backup sets.

Backup sets are remote directories named <prefix>YYYY-MM-DD. Before a new
set is created, the oldest sets are removed so that, once the new set
exists, no more than the configured limit remain.
"""

import re
import logging
from typing import Iterable, List

from folder_backup.config import DEFAULT_BACKUPS_LIMIT
from folder_backup.models import RemoteEntry
from .storage import StorageError


logger = logging.getLogger(__name__)


class RetentionError(Exception):
    """Raised when old backup sets cannot be listed or removed."""
    pass


def backup_set_pattern(prefix: str):
    return re.compile(rf"^{re.escape(prefix)}\d{{4}}-\d{{2}}-\d{{2}}$")


def select_expired(entries: Iterable[RemoteEntry], limit: int, prefix: str = 'backups-') -> List[RemoteEntry]:
    """
    Pick the backup sets to delete before a new one is added.

    Only entries named like a backup set (and not plain files) are
    considered. They are sorted by name, which is chronological because
    dates are zero-padded. When there are `limit` or more sets, the oldest
    `count - limit + 1` are returned, leaving room for exactly one new set.

    Args:
        entries: Remote listing
        limit: Maximum number of sets to keep; values below 1 mean the default
        prefix: Backup set name prefix

    Returns:
        Entries to delete, oldest first
    """
    if not limit or limit <= 0:
        limit = DEFAULT_BACKUPS_LIMIT

    pattern = backup_set_pattern(prefix)
    backup_sets = sorted(
        (entry for entry in entries if pattern.match(entry.name) and not entry.is_file),
        key=lambda entry: entry.name
    )

    if len(backup_sets) < limit:
        return []

    return backup_sets[:len(backup_sets) - limit + 1]


class RetentionManager:
    """
    Removes the oldest remote backup sets beyond the retention limit.
    """

    def __init__(self, limit: int = DEFAULT_BACKUPS_LIMIT, prefix: str = 'backups-', root: str = '/'):
        """
        Initialize retention manager.

        Args:
            limit: Number of backup sets to keep, including the one about to be created
            prefix: Backup set name prefix
            root: Remote directory holding the backup sets
        """
        self.limit = limit if limit and limit > 0 else DEFAULT_BACKUPS_LIMIT
        self.prefix = prefix
        self.root = root

    def enforce(self, storage) -> List[str]:
        """
        Delete expired backup sets.

        Args:
            storage: Connected remote storage handler

        Returns:
            Names of the deleted sets

        Raises:
            RetentionError: If listing or deletion fails
        """
        try:
            entries = storage.list_entries(self.root)
        except StorageError as e:
            raise RetentionError(f"Failed to list remote backups: {e}") from e

        expired = select_expired(entries, self.limit, self.prefix)
        if not expired:
            logger.info(f"Retention: nothing to delete (limit {self.limit})")
            return []

        deleted = []
        for entry in expired:
            path = f"{self.root.rstrip('/')}/{entry.name}"
            try:
                storage.remove_directory(path)
            except StorageError as e:
                raise RetentionError(f"Failed to delete old backup {entry.name}: {e}") from e
            deleted.append(entry.name)
            logger.info(f"Deleted old backup: {entry.name}")

        return deleted
