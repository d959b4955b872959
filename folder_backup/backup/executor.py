"""
Backup executor - orchestrates a complete backup run.

Workflow:
1. Validate configuration, connect to the remote endpoint
2. Delete old backup sets beyond the retention limit
3. Create today's remote backup directory
4. Enumerate source folders
5. For each folder: check free space, archive, upload with retry
6. Summarize and send the report

Any failure aborts the run and sends a single error notification.
"""

import os
import time
import logging
from typing import Callable, Optional

from folder_backup.models import (
    RunContext,
    FolderJob,
    STATUS_UPLOADED,
    STATUS_SKIPPED,
    STATUS_FAILED,
    OUTCOME_SUCCESS,
    OUTCOME_PARTIAL,
    OUTCOME_FAILURE,
)
from folder_backup.notify import TelegramNotifier
from .sources import list_folders, has_enough_space, get_size_summary
from .compression import create_archiver
from .storage import create_storage
from .retention import RetentionManager
from .retry import retry_call


logger = logging.getLogger(__name__)

# Run states
STATE_INIT = 'Init'
STATE_RETENTION_CHECK = 'RetentionCheck'
STATE_DIRECTORY_PREPARED = 'DirectoryPrepared'
STATE_ENUMERATING = 'Enumerating'
STATE_PROCESSING_FOLDER = 'ProcessingFolder'
STATE_SUMMARIZING = 'Summarizing'
STATE_DONE = 'Done'
STATE_FAILED = 'Failed'

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class BackupExecutor:
    """
    Runs one backup of every folder under SOURCE_DIR.

    Collaborators are injectable so the run can be exercised without a
    real remote endpoint, archiver or Telegram bot.
    """

    def __init__(
        self,
        config,
        storage_factory: Callable = create_storage,
        archiver=None,
        notifier: Optional[TelegramNotifier] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize backup executor.

        Args:
            config: Config instance
            storage_factory: Callable returning an unconnected storage handler for config
            archiver: Archiver instance (default: chosen by COPY_BEFORE_BACKUP)
            notifier: Notifier instance (default: Telegram from config)
            sleep: Used to wait between upload attempts
        """
        self.config = config
        self.storage_factory = storage_factory
        self.archiver = archiver
        self.notifier = notifier or TelegramNotifier.from_config(config)
        self.sleep = sleep

        self.context = None
        self.state = None
        self.operation = None
        self.current_folder = None

    def execute(self) -> int:
        """
        Execute the backup run.

        Returns:
            Process exit code: 0 on success, 1 on any failure
        """
        self._transition(STATE_INIT)

        try:
            message = self._execute_workflow()
        except Exception as e:
            self._transition(STATE_FAILED)
            if self.context is not None:
                self.context.outcome = OUTCOME_FAILURE

            error_message = self._describe_failure(e)
            logger.exception(f"Backup failed: {error_message}")
            self.notifier.notify(error_message, is_error=True)
            return EXIT_FAILURE

        self._transition(STATE_DONE)
        if self.config.ONLY_ON_ERROR:
            logger.info(f"Backup finished, success notification suppressed: {message}")
        else:
            self.notifier.notify(message, is_error=False)

        return EXIT_SUCCESS

    def _execute_workflow(self) -> str:
        """Execute the main backup workflow steps and return the report."""
        # Step 1: Configuration and run context
        self.operation = 'Configuration check'
        self.config.validate()
        if self.archiver is None:
            self.archiver = create_archiver(self.config)

        self.context = RunContext.create(self.config)
        os.makedirs(self.context.temp_dir, exist_ok=True)
        logger.info(f"Starting backup run into /{self.context.destination}")

        # Step 2-3: Retention and destination directory
        self._prepare_destination()

        # Step 4: Enumerate folders
        self._transition(STATE_ENUMERATING)
        self.operation = 'Folder enumeration'
        self.context.folders = list_folders(self.context.source_dir)

        if not self.context.folders:
            self._transition(STATE_SUMMARIZING)
            self.context.outcome = OUTCOME_SUCCESS
            return "No folders to backup"

        # Step 5: Process folders in order
        for index, folder in enumerate(self.context.folders):
            self._transition(STATE_PROCESSING_FOLDER, f"{index + 1}/{len(self.context.folders)} {folder}")
            self._process_folder(self.context.new_job(folder))

        self.current_folder = None

        # Step 6: Summary
        self._transition(STATE_SUMMARIZING)
        self.operation = 'Summary'
        return self._build_report()

    def _prepare_destination(self):
        """Connect, prune old backup sets and create today's directory."""
        self.operation = 'Remote connection'
        storage = self.storage_factory(self.config)
        storage.connect()

        try:
            self._transition(STATE_RETENTION_CHECK)
            self.operation = 'Retention cleanup'
            retention = RetentionManager(limit=self.config.BACKUPS_LIMIT, prefix=self.config.BACKUP_PREFIX)
            retention.enforce(storage)

            self.operation = 'Remote directory creation'
            storage.ensure_directory(f"/{self.context.destination}")
            self._transition(STATE_DIRECTORY_PREPARED)
        finally:
            storage.close()

    def _process_folder(self, job: FolderJob):
        """
        Back up a single folder.

        Raises:
            Exception: Any failure; the job is marked failed first
        """
        self.current_folder = job.name

        try:
            # Space check
            self.operation = 'Space check'
            if not has_enough_space(job.source_path, self.context.temp_dir, self.config.COPY_BEFORE_BACKUP):
                job.status = STATUS_SKIPPED
                logger.warning(f"Not enough free space to backup folder: {job.name}, skipping")
                self.notifier.notify(
                    f"Not enough free space to backup folder '{job.name}', skipped",
                    is_error=True
                )
                return

            # Archive
            self.operation = 'Archive'
            self.archiver.archive(job)

            # Upload
            self.operation = 'Upload'
            job.remote_path = self.context.remote_path_for(os.path.basename(job.archive_path))

            def on_attempt(state):
                job.attempts = state.attempt

            retry_call(
                lambda: self._upload(job),
                max_attempts=self.config.UPLOAD_ATTEMPTS,
                delay=self.config.UPLOAD_RETRY_DELAY,
                sleep=self.sleep,
                description=f"Upload of {job.name}",
                on_attempt=on_attempt
            )
            job.status = STATUS_UPLOADED
            logger.info(f"Uploaded archive for folder: {job.name}")

        except Exception as e:
            job.status = STATUS_FAILED
            job.error = str(e)
            raise

        self._remove_local_archive(job)

    def _upload(self, job: FolderJob):
        """Upload one archive over a fresh connection."""
        with self.storage_factory(self.config) as storage:
            storage.upload(job.archive_path, job.remote_path)

    def _remove_local_archive(self, job: FolderJob):
        try:
            os.remove(job.archive_path)
        except OSError as e:
            logger.warning(f"Failed to remove local archive {job.archive_path}: {e}")

    def _build_report(self) -> str:
        uploaded = [job.name for job in self.context.jobs_with_status(STATUS_UPLOADED)]
        skipped = [job.name for job in self.context.jobs_with_status(STATUS_SKIPPED)]

        self.context.outcome = OUTCOME_PARTIAL if skipped else OUTCOME_SUCCESS

        lines = [f"Backup completed into /{self.context.destination}"]
        if uploaded:
            lines.append(f"Folders: {', '.join(uploaded)}")
            lines.append(get_size_summary(self.context.source_dir, uploaded))
        else:
            lines.append("No folders were uploaded")
        if skipped:
            lines.append(f"Skipped (not enough space): {', '.join(skipped)}")

        return '\n'.join(lines)

    def _describe_failure(self, error: Exception) -> str:
        operation = self.operation or 'Backup'
        if self.current_folder:
            return f"{operation} failed for folder '{self.current_folder}': {error}"
        return f"{operation} failed: {error}"

    def _transition(self, state: str, detail: str = ''):
        self.state = state
        logger.debug(f"State -> {state}{' ' + detail if detail else ''}")


def execute_backup(config) -> int:
    """
    Run a backup with the default collaborators.

    Args:
        config: Config instance

    Returns:
        Process exit code
    """
    executor = BackupExecutor(config)
    return executor.execute()
