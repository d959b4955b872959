"""
Source folder inspection.

- list_folders: enumerate the folders to back up
- has_enough_space: decide whether a folder fits in the local work directory
- get_size_summary: human-readable sizes for the run report
"""

import os
import shutil
import logging
from pathlib import Path
from typing import List, Optional

from folder_backup.config import ConfigurationError
from .compression import run_command, CommandError


logger = logging.getLogger(__name__)

SIZE_SUMMARY_PLACEHOLDER = '....failed to get backups list....'


def list_folders(source_dir: Optional[str]) -> List[str]:
    """
    List the folders to back up.

    Args:
        source_dir: Root directory whose immediate subdirectories are backed up

    Returns:
        Sorted list of subdirectory names, hidden entries excluded

    Raises:
        ConfigurationError: If source_dir is unset or cannot be read
    """
    if not source_dir:
        raise ConfigurationError("SOURCE_DIR is not set")

    root = Path(source_dir)
    if not root.is_dir():
        raise ConfigurationError(f"SOURCE_DIR is not a directory: {source_dir}")

    try:
        folders = [
            entry.name for entry in root.iterdir()
            if not entry.name.startswith('.') and entry.is_dir()
        ]
    except PermissionError as e:
        raise ConfigurationError(f"Permission denied reading SOURCE_DIR {source_dir}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to read SOURCE_DIR {source_dir}: {e}")

    folders.sort()
    logger.info(f"Folders to backup: {', '.join(folders) if folders else '(none)'}")
    return folders


def get_path_size(path: str) -> int:
    """
    Get the size of a file, or the total size of a directory tree.

    Symlinks are counted by their own size and never followed.

    Raises:
        OSError: If the path or any entry below it cannot be read
    """
    source = Path(path)

    if not source.is_dir() or source.is_symlink():
        return source.lstat().st_size

    def _raise(error):
        raise error

    total = 0
    for dirpath, dirnames, filenames in os.walk(source, onerror=_raise):
        for name in filenames:
            total += os.lstat(os.path.join(dirpath, name)).st_size
    return total


def get_free_space(path: str) -> int:
    """Free bytes on the filesystem holding path."""
    return shutil.disk_usage(path).free


def has_enough_space(source_path: str, work_dir: str, copy_mode: bool = False) -> bool:
    """
    Check whether a folder can be archived into the work directory.

    In copy mode the local copy and the archive exist side by side, so twice
    the folder size is required. If the folder size cannot be computed the
    check passes (size is taken as 0).

    Args:
        source_path: Folder that will be archived
        work_dir: Directory where temporary files are written
        copy_mode: True when the folder is copied locally before compression

    Returns:
        True if free space >= required space
    """
    try:
        size = get_path_size(source_path)
    except Exception as e:
        logger.error(f"Failed to compute size of {source_path}, assuming 0: {e}")
        size = 0

    required = size * 2 if copy_mode else size
    free = get_free_space(work_dir)

    logger.debug(f"Space check for {source_path}: required={required} free={free}")
    return free >= required


def get_size_summary(source_dir: str, folders: List[str]) -> str:
    """
    Human-readable size listing of the given folders (du -sh).

    Never raises; returns a placeholder when du fails.
    """
    if folders:
        paths = [os.path.join(source_dir, folder) for folder in folders]
    else:
        paths = [source_dir]

    try:
        output = run_command(['du', '-sh'] + paths, timeout=300)
    except CommandError as e:
        logger.warning(f"Failed to get size summary: {e}")
        return SIZE_SUMMARY_PLACEHOLDER

    prefix = source_dir.rstrip('/') + '/'
    return output.stdout.strip().replace(prefix, '')
