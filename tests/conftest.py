"""
Shared pytest fixtures for folder-backup tests.

This module provides fixtures for:
- Config built from an isolated environment dict
- Source directory trees
- An in-memory remote storage fake
- A fake archiver that writes small files instead of calling tar
- Mock fixtures for external services (Telegram, paramiko)
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from folder_backup.config import Config
from folder_backup.models import RemoteEntry, KIND_DIR, STATUS_ARCHIVED
from folder_backup.backup.storage import TransferError


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source directory with folders to back up.

    Creates:
    - alpha/ (two files)
    - beta/ (nested file)
    - .hidden/ (must never be backed up)
    - notes.txt (plain file, not a folder)
    """
    root = tmp_path / 'source'
    root.mkdir()

    alpha = root / 'alpha'
    alpha.mkdir()
    (alpha / 'a.txt').write_text('alpha content')
    (alpha / 'b.txt').write_text('more alpha content')

    beta = root / 'beta' / 'nested'
    beta.mkdir(parents=True)
    (beta / 'c.txt').write_text('beta content')

    (root / '.hidden').mkdir()
    (root / 'notes.txt').write_text('not a folder')

    return root


@pytest.fixture
def env(tmp_path, source_dir):
    """Environment dict for a complete, valid configuration."""
    return {
        'SOURCE_DIR': str(source_dir),
        'REMOTE_HOST': 'ftp.example.com',
        'REMOTE_USER': 'node1',
        'REMOTE_PASS': 'secret',
        'TELEGRAM_BOT_TOKEN': 'bot123:ABC',
        'TELEGRAM_CHAT_ID': '42',
        'UPLOAD_RETRY_DELAY': '300',
        'WORK_DIR': str(tmp_path / 'work'),
    }


@pytest.fixture
def make_config(env):
    """Build a Config from the env fixture plus overrides."""
    def _make(**overrides):
        values = dict(env)
        values.update({key: str(value) for key, value in overrides.items()})
        return Config(values)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


class FakeStorage:
    """
    In-memory remote storage.

    Directories are a dict of name -> dict of file name -> bytes. Calls are
    recorded in `calls`; failures can be injected per operation.
    """

    def __init__(self, directories=None):
        self.directories = directories if directories is not None else {}
        self.calls = []
        self.connected = False
        self.fail_connect = None
        self.fail_upload = None
        self.fail_list = None
        self.fail_remove = None

    def __call__(self, config):
        # Acts as the storage factory
        return self

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def connect(self):
        self.calls.append(('connect',))
        if self.fail_connect:
            raise self.fail_connect
        self.connected = True

    def close(self):
        self.calls.append(('close',))
        self.connected = False

    def list_entries(self, path='/'):
        self.calls.append(('list_entries', path))
        if self.fail_list:
            raise self.fail_list
        return [RemoteEntry(name=name, kind=KIND_DIR) for name in self.directories]

    def ensure_directory(self, path):
        self.calls.append(('ensure_directory', path))
        self.directories.setdefault(path.strip('/'), {})

    def remove_directory(self, path):
        self.calls.append(('remove_directory', path))
        if self.fail_remove:
            raise self.fail_remove
        del self.directories[path.strip('/')]

    def upload(self, local_path, remote_path):
        self.calls.append(('upload', local_path, remote_path))
        if self.fail_upload:
            error = self.fail_upload.pop(0) if isinstance(self.fail_upload, list) else self.fail_upload
            if error:
                raise error
        directory, _, filename = remote_path.strip('/').rpartition('/')
        if directory not in self.directories:
            raise TransferError(f"No such directory: {directory}")
        with open(local_path, 'rb') as f:
            self.directories[directory][filename] = f.read()

    def uploads(self):
        return [call for call in self.calls if call[0] == 'upload']


@pytest.fixture
def fake_storage():
    return FakeStorage()


class FakeArchiver:
    """Writes a small placeholder archive instead of running tar."""

    def __init__(self, temp_dir):
        self.temp_dir = temp_dir
        self.archived = []
        self.fail_for = {}

    def archive(self, job):
        if job.name in self.fail_for:
            raise self.fail_for[job.name]
        os.makedirs(self.temp_dir, exist_ok=True)
        archive_path = os.path.join(self.temp_dir, f"{job.name}.tar.gz")
        with open(archive_path, 'wb') as f:
            f.write(os.fsencode(f"archive of {job.name}"))
        job.archive_path = archive_path
        job.status = STATUS_ARCHIVED
        self.archived.append(job.name)
        return archive_path


@pytest.fixture
def fake_archiver(config):
    return FakeArchiver(config.TEMP_DIR)


@pytest.fixture
def mock_telegram():
    """
    Patch requests.post used by the notifier.

    Returns the mock; sent texts are available via call_args.
    """
    with patch('folder_backup.notify.requests.post') as mock_post:
        mock_post.return_value = MagicMock(ok=True, status_code=200, text='{"ok":true}')
        yield mock_post


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP testing.

    Returns a MagicMock that simulates SSH connections.
    """
    with patch('folder_backup.backup.storage.SSHClient') as mock_ssh:
        # Mock SFTP client
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp

        # Mock connection success
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh
