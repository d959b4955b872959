"""
In-memory records for a single backup run.

Nothing here is persisted; a run's only lasting side effects are the
remote archives and the notification it sends.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


# FolderJob statuses
STATUS_PENDING = 'pending'
STATUS_ARCHIVED = 'archived'
STATUS_UPLOADED = 'uploaded'
STATUS_SKIPPED = 'skipped'
STATUS_FAILED = 'failed'

# RunContext outcomes
OUTCOME_SUCCESS = 'success'
OUTCOME_PARTIAL = 'partial'
OUTCOME_FAILURE = 'failure'

# RemoteEntry kinds
KIND_DIR = 'dir'
KIND_FILE = 'file'
KIND_UNKNOWN = 'unknown'


def backup_folder_name(prefix: str, when: Optional[datetime] = None) -> str:
    """Remote directory name for the backup set of the given day, e.g. backups-2024-01-15."""
    when = when or datetime.now()
    return f"{prefix}{when.strftime('%Y-%m-%d')}"


@dataclass
class RemoteEntry:
    """One item of a remote directory listing."""
    name: str
    kind: str = KIND_UNKNOWN

    @property
    def is_file(self) -> bool:
        return self.kind == KIND_FILE


@dataclass
class RetryState:
    """Progress of a retried operation."""
    max_attempts: int
    delay: float
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_attempt(self) -> int:
        if self.exhausted:
            raise RuntimeError(f"Attempt limit reached ({self.max_attempts})")
        self.attempt += 1
        return self.attempt


@dataclass
class FolderJob:
    """Backup of a single source folder within a run."""
    name: str
    source_path: str
    archive_path: Optional[str] = None
    remote_path: Optional[str] = None
    attempts: int = 0
    status: str = STATUS_PENDING
    error: Optional[str] = None


@dataclass
class RunContext:
    """
    State of one backup run.

    Built once at the start of a run and passed explicitly to every step.
    """
    source_dir: str
    temp_dir: str
    destination: str
    started_at: datetime = field(default_factory=datetime.now)
    folders: List[str] = field(default_factory=list)
    jobs: List[FolderJob] = field(default_factory=list)
    outcome: Optional[str] = None

    @classmethod
    def create(cls, config, now: Optional[datetime] = None) -> 'RunContext':
        now = now or datetime.now()
        return cls(
            source_dir=config.SOURCE_DIR,
            temp_dir=config.TEMP_DIR,
            destination=backup_folder_name(config.BACKUP_PREFIX, now),
            started_at=now,
        )

    def remote_path_for(self, filename: str) -> str:
        return f"/{self.destination}/{filename}"

    def new_job(self, folder: str) -> FolderJob:
        job = FolderJob(name=folder, source_path=os.path.join(self.source_dir, folder))
        self.jobs.append(job)
        return job

    def jobs_with_status(self, status: str) -> List[FolderJob]:
        return [job for job in self.jobs if job.status == status]
