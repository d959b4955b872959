"""
Archive creation for backup folders.

Archives are produced by external tools:
- DirectArchiver: tar straight from the source folder
- CopyArchiver: rsync the folder into the work directory, then tar the copy

Supported compressions:
- gz: tar.gz (default)
- bz2: tar.bz2
- xz: tar.xz
- zst: tar.zst
"""

import os
import shutil
import logging
import subprocess
from typing import Sequence

from folder_backup.models import FolderJob, STATUS_ARCHIVED


logger = logging.getLogger(__name__)

# compression -> tar flag
COMPRESSION_FORMATS = {
    'gz': '--gzip',
    'bz2': '--bzip2',
    'xz': '--xz',
    'zst': '--zstd',
}

# GNU tar exits with 1 when files changed while being read
TAR_WARNING_EXIT_CODES = (1,)

DEFAULT_COMMAND_TIMEOUT = 24 * 60 * 60


class CommandError(Exception):
    """Raised when an external command fails to run or exits non-zero."""

    def __init__(self, message: str, returncode: int = None, stderr: str = ''):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


def run_command(
    args: Sequence[str],
    allowed_codes: Sequence[int] = (0,),
    timeout: int = DEFAULT_COMMAND_TIMEOUT
) -> subprocess.CompletedProcess:
    """
    Run an external command and wait for it to finish.

    Args:
        args: Command and arguments as a list (no shell)
        allowed_codes: Exit codes treated as success
        timeout: Seconds before the command is killed

    Returns:
        CompletedProcess with decoded stdout/stderr

    Raises:
        CommandError: If the command is missing, times out, or exits with
            a code outside allowed_codes
    """
    command = ' '.join(args)
    logger.debug(f"Running command: {command}")

    try:
        result = subprocess.run(
            list(args),
            capture_output=True,
            encoding='utf-8',
            errors='replace',
            timeout=timeout
        )
    except FileNotFoundError:
        raise CommandError(f"Command not found: {args[0]}")
    except subprocess.TimeoutExpired:
        raise CommandError(f"Command timed out after {timeout}s: {command}")
    except OSError as e:
        raise CommandError(f"Failed to run {command}: {e}")

    stderr = (result.stderr or '').strip()

    if result.returncode not in allowed_codes:
        raise CommandError(
            f"Command failed with code {result.returncode}: {command}: {stderr}",
            returncode=result.returncode,
            stderr=stderr
        )

    if stderr:
        logger.warning(f"{args[0]}: {stderr}")

    return result


def archive_filename(folder: str, compression: str = 'gz') -> str:
    """Archive filename for a folder, e.g. 'alpha.tar.gz'."""
    return f"{folder}.tar.{compression}"


def _remove_path(path: str):
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)


class DirectArchiver:
    """
    Compress a source folder straight into an archive in the work directory.

    Unreadable files are skipped with a warning instead of failing the archive.
    """

    def __init__(self, temp_dir: str, compression: str = 'gz', timeout: int = DEFAULT_COMMAND_TIMEOUT):
        if compression not in COMPRESSION_FORMATS:
            raise ValueError(
                f"Invalid compression: {compression}. "
                f"Valid options: {list(COMPRESSION_FORMATS.keys())}"
            )
        self.temp_dir = temp_dir
        self.compression = compression
        self.timeout = timeout

    def archive_path_for(self, folder: str) -> str:
        return os.path.join(self.temp_dir, archive_filename(folder, self.compression))

    def archive(self, job: FolderJob) -> str:
        """
        Create the archive for a folder job.

        Args:
            job: FolderJob to archive; archive_path and status are updated

        Returns:
            Path to the created archive

        Raises:
            ArchiveError: If an external tool fails
        """
        os.makedirs(self.temp_dir, exist_ok=True)
        archive_path = self.archive_path_for(job.name)
        self._clear_stale(job.name)

        try:
            self._compress(self._source_for(job), archive_path)
            self._after_compress(job)
        except (CommandError, OSError) as e:
            if os.path.exists(archive_path):
                try:
                    os.remove(archive_path)
                except OSError as cleanup_error:
                    logger.debug(f"Failed to remove partial archive {archive_path}: {cleanup_error}")
            raise ArchiveError(f"Failed to create archive for {job.name}: {e}") from e

        job.archive_path = archive_path
        job.status = STATUS_ARCHIVED
        logger.info(f"Archive created for folder: {job.name} ({get_archive_size(archive_path)} bytes)")
        return archive_path

    def _source_for(self, job: FolderJob) -> str:
        return job.source_path

    def _after_compress(self, job: FolderJob):
        pass

    def _clear_stale(self, folder: str):
        """Remove leftovers from an interrupted run."""
        archive_path = self.archive_path_for(folder)
        if os.path.lexists(archive_path):
            logger.info(f"Removing stale archive: {archive_path}")
            _remove_path(archive_path)

    def _compress(self, source_dir: str, archive_path: str):
        args = [
            'tar',
            '--ignore-failed-read',
            COMPRESSION_FORMATS[self.compression],
            '-cf', archive_path,
            '-C', source_dir,
            '.'
        ]
        result = run_command(args, allowed_codes=(0,) + TAR_WARNING_EXIT_CODES, timeout=self.timeout)
        if result.returncode in TAR_WARNING_EXIT_CODES:
            logger.warning(f"Some files changed while archiving {source_dir}; archive created anyway")


class CopyArchiver(DirectArchiver):
    """
    Mirror the source folder into the work directory with rsync, then
    compress the local copy and remove it.
    """

    def copy_path_for(self, folder: str) -> str:
        return os.path.join(self.temp_dir, folder)

    def _clear_stale(self, folder: str):
        super()._clear_stale(folder)
        copy_path = self.copy_path_for(folder)
        if os.path.lexists(copy_path):
            logger.info(f"Removing stale copy: {copy_path}")
            _remove_path(copy_path)

    def _source_for(self, job: FolderJob) -> str:
        copy_path = self.copy_path_for(job.name)
        logger.info(f"Copying {job.source_path} to {copy_path}")
        run_command(
            ['rsync', '-a', '--delete', job.source_path.rstrip('/') + '/', copy_path + '/'],
            timeout=self.timeout
        )
        return copy_path

    def _after_compress(self, job: FolderJob):
        copy_path = self.copy_path_for(job.name)
        if os.path.exists(copy_path):
            shutil.rmtree(copy_path)
            logger.debug(f"Removed local copy: {copy_path}")


def create_archiver(config):
    """
    Factory function to create the archiver selected by configuration.

    Args:
        config: Config instance (uses COPY_BEFORE_BACKUP, COMPRESSION, TEMP_DIR)

    Returns:
        CopyArchiver or DirectArchiver instance
    """
    if config.COPY_BEFORE_BACKUP:
        return CopyArchiver(config.TEMP_DIR, config.COMPRESSION)
    return DirectArchiver(config.TEMP_DIR, config.COMPRESSION)


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")
