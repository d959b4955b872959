"""
Unit tests for source folder inspection (folder_backup/backup/sources.py).

Tests folder enumeration, the space check and the size summary.
"""

import os
import shutil
import subprocess
from collections import namedtuple
from unittest.mock import patch

import pytest

from folder_backup.backup.sources import (
    list_folders,
    get_path_size,
    has_enough_space,
    get_size_summary,
    SIZE_SUMMARY_PLACEHOLDER
)
from folder_backup.backup.compression import CommandError
from folder_backup.config import ConfigurationError


DiskUsage = namedtuple('DiskUsage', ['total', 'used', 'free'])


class TestListFolders:
    """Test folder enumeration."""

    def test_lists_visible_directories_sorted(self, source_dir):
        """Only non-hidden directories are listed, in lexicographic order."""
        (source_dir / 'Zeta').mkdir()
        (source_dir / 'gamma').mkdir()

        assert list_folders(str(source_dir)) == ['Zeta', 'alpha', 'beta', 'gamma']

    def test_excludes_hidden_entries(self, tmp_path):
        """Entries starting with a dot are never listed."""
        for name in ['.git', '.cache', 'data', '.data']:
            (tmp_path / name).mkdir()

        assert list_folders(str(tmp_path)) == ['data']

    def test_excludes_plain_files(self, source_dir):
        """Files at the source root are not backup folders."""
        assert 'notes.txt' not in list_folders(str(source_dir))

    def test_deterministic_across_calls(self, source_dir):
        """Repeated calls on an unchanged directory give the same order."""
        assert list_folders(str(source_dir)) == list_folders(str(source_dir))

    def test_empty_directory(self, tmp_path):
        """An empty source root yields an empty list, not an error."""
        assert list_folders(str(tmp_path)) == []

    @pytest.mark.parametrize("value", [None, ''])
    def test_unset_source_dir(self, value):
        """Missing SOURCE_DIR is a configuration error."""
        with pytest.raises(ConfigurationError, match="SOURCE_DIR is not set"):
            list_folders(value)

    def test_missing_source_dir(self, tmp_path):
        """A source root that does not exist is a configuration error."""
        with pytest.raises(ConfigurationError, match="not a directory"):
            list_folders(str(tmp_path / 'missing'))

    def test_unreadable_source_dir(self, tmp_path):
        """Permission errors while listing are configuration errors."""
        with patch('folder_backup.backup.sources.Path.iterdir', side_effect=PermissionError("denied")):
            with pytest.raises(ConfigurationError, match="Permission denied"):
                list_folders(str(tmp_path))


class TestGetPathSize:
    """Test size computation."""

    def test_file_size(self, tmp_path):
        path = tmp_path / 'file.bin'
        path.write_bytes(b'x' * 123)

        assert get_path_size(str(path)) == 123

    def test_directory_size_is_recursive(self, tmp_path):
        (tmp_path / 'a').write_bytes(b'x' * 100)
        nested = tmp_path / 'sub' / 'deeper'
        nested.mkdir(parents=True)
        (nested / 'b').write_bytes(b'y' * 50)

        assert get_path_size(str(tmp_path)) == 150

    def test_missing_path_raises(self, tmp_path):
        with pytest.raises(OSError):
            get_path_size(str(tmp_path / 'missing'))


class TestHasEnoughSpace:
    """Test the space check decision."""

    @pytest.mark.parametrize("size,free,copy_mode,expected", [
        (100, 100, False, True),
        (100, 99, False, False),
        (100, 200, True, True),
        (100, 199, True, False),
        (0, 0, True, True),
    ])
    @patch('folder_backup.backup.sources.shutil.disk_usage')
    @patch('folder_backup.backup.sources.get_path_size')
    def test_required_space(self, mock_size, mock_disk_usage, size, free, copy_mode, expected):
        """Insufficient iff free < size (x2 in copy mode)."""
        mock_size.return_value = size
        mock_disk_usage.return_value = DiskUsage(total=10 ** 9, used=0, free=free)

        assert has_enough_space('/src/folder', '/work', copy_mode=copy_mode) is expected

    @patch('folder_backup.backup.sources.shutil.disk_usage')
    @patch('folder_backup.backup.sources.get_path_size')
    def test_size_failure_fails_open(self, mock_size, mock_disk_usage):
        """If the size cannot be computed the folder is treated as empty."""
        mock_size.side_effect = PermissionError("denied")
        mock_disk_usage.return_value = DiskUsage(total=100, used=100, free=0)

        assert has_enough_space('/src/folder', '/work', copy_mode=True) is True

    def test_real_directory(self, source_dir, tmp_path):
        """A small folder fits on the test filesystem."""
        assert has_enough_space(str(source_dir / 'alpha'), str(tmp_path)) is True


class TestGetSizeSummary:
    """Test the du-based size summary."""

    @patch('folder_backup.backup.sources.run_command')
    def test_strips_source_prefix(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=0,
            stdout="4.0K\t/data/src/alpha\n12K\t/data/src/beta\n", stderr=''
        )

        summary = get_size_summary('/data/src', ['alpha', 'beta'])

        assert summary == "4.0K\talpha\n12K\tbeta"
        args = mock_run.call_args[0][0]
        assert args == ['du', '-sh', os.path.join('/data/src', 'alpha'), os.path.join('/data/src', 'beta')]

    @patch('folder_backup.backup.sources.run_command')
    def test_failure_returns_placeholder(self, mock_run):
        """du failing never aborts the run."""
        mock_run.side_effect = CommandError("Command not found: du")

        assert get_size_summary('/data/src', ['alpha']) == SIZE_SUMMARY_PLACEHOLDER

    @pytest.mark.skipif(shutil.which('du') is None, reason="du not installed")
    def test_undecodable_folder_name(self, tmp_path):
        """Folder names that are not valid UTF-8 still produce a summary."""
        name = os.fsdecode(b'bad\xff')
        os.mkdir(os.path.join(os.fsencode(str(tmp_path)), b'bad\xff'))

        summary = get_size_summary(str(tmp_path), [name])

        assert summary != SIZE_SUMMARY_PLACEHOLDER
        assert 'bad\ufffd' in summary
