"""
Remote storage handlers for backup archives.

Supports:
- FTPStorage: FTP, or FTPS (explicit TLS) when secure is enabled
- SFTPStorage: SFTP over SSH via paramiko

Both expose the same interface: connect, list_entries, ensure_directory,
remove_directory, upload and close, and can be used as context managers.
"""

import os
import stat
import socket
import ftplib
import logging
import posixpath
from typing import List, Optional

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from folder_backup.models import RemoteEntry, KIND_DIR, KIND_FILE, KIND_UNKNOWN


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a remote storage operation fails."""
    pass


class StorageConnectionError(StorageError):
    """Raised when the remote endpoint cannot be reached or rejects the login."""
    pass


class TransferError(StorageError):
    """Raised when uploading a file fails."""
    pass


def _split_path(path: str) -> List[str]:
    return [part for part in path.split('/') if part]


class RemoteStorage:
    """Common behaviour of the remote storage handlers."""

    protocol = None

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 600,
        keepalive: int = 30,
        verbose: bool = False
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self.keepalive = keepalive
        self.verbose = verbose

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.protocol}://{self.username or ''}@{self.host}:{self.port}>"


class FTPStorage(RemoteStorage):
    """
    Handler for FTP and FTPS endpoints.

    Uses MLSD for listings where the server supports it and falls back
    to NLST (entry kinds are then unknown).
    """

    protocol = 'ftp'

    def __init__(self, host: str, port: int = 21, username: Optional[str] = None,
                 password: Optional[str] = None, secure: bool = False, **kwargs):
        super().__init__(host, port, username, password, **kwargs)
        self.secure = secure
        self.ftp = None

    def connect(self):
        """
        Connect and log in.

        Raises:
            StorageConnectionError: If connection or login fails
        """
        ftp = ftplib.FTP_TLS(timeout=self.timeout) if self.secure else ftplib.FTP(timeout=self.timeout)
        ftp.set_debuglevel(1 if self.verbose else 0)

        try:
            ftp.connect(self.host, self.port)
            ftp.login(self.username or 'anonymous', self.password or '')
            if self.secure:
                ftp.prot_p()
        except ftplib.error_perm as e:
            self._safe_close(ftp)
            raise StorageConnectionError(f"FTP login failed for {self.username}@{self.host}: {e}")
        except ftplib.all_errors as e:
            self._safe_close(ftp)
            raise StorageConnectionError(f"Failed to connect to {self.host}:{self.port}: {e}")

        if self.keepalive and ftp.sock is not None:
            self._enable_keepalive(ftp.sock)

        self.ftp = ftp
        logger.debug(f"Connected to {self!r}")

    def _enable_keepalive(self, sock: socket.socket):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        if hasattr(socket, 'TCP_KEEPIDLE'):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, self.keepalive)
        if hasattr(socket, 'TCP_KEEPINTVL'):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, self.keepalive)

    def _require_connection(self) -> ftplib.FTP:
        if self.ftp is None:
            raise StorageError("Not connected")
        return self.ftp

    def list_entries(self, path: str = '/') -> List[RemoteEntry]:
        """
        List a remote directory.

        Returns:
            List of RemoteEntry, without '.' and '..'

        Raises:
            StorageError: If listing fails
        """
        ftp = self._require_connection()

        try:
            entries = []
            for name, facts in ftp.mlsd(path, facts=['type']):
                kind = facts.get('type', '').lower()
                if kind in ('cdir', 'pdir') or name in ('.', '..'):
                    continue
                entries.append(RemoteEntry(
                    name=name,
                    kind={'dir': KIND_DIR, 'file': KIND_FILE}.get(kind, KIND_UNKNOWN)
                ))
            return entries
        except ftplib.error_perm as e:
            logger.debug(f"MLSD not available ({e}), falling back to NLST")
        except ftplib.all_errors as e:
            raise StorageError(f"Failed to list {path}: {e}")

        try:
            names = ftp.nlst(path)
        except ftplib.error_perm as e:
            # Some servers answer an empty directory with 550
            if str(e).startswith('550'):
                return []
            raise StorageError(f"Failed to list {path}: {e}")
        except ftplib.all_errors as e:
            raise StorageError(f"Failed to list {path}: {e}")

        return [
            RemoteEntry(name=posixpath.basename(name.rstrip('/')), kind=KIND_UNKNOWN)
            for name in names
            if posixpath.basename(name.rstrip('/')) not in ('', '.', '..')
        ]

    def ensure_directory(self, path: str):
        """
        Create a remote directory and any missing parents.

        Existing directories are left untouched.

        Raises:
            StorageError: If a directory cannot be created
        """
        ftp = self._require_connection()

        try:
            ftp.cwd('/')
            for part in _split_path(path):
                try:
                    ftp.cwd(part)
                except ftplib.error_perm:
                    ftp.mkd(part)
                    ftp.cwd(part)
            ftp.cwd('/')
        except ftplib.all_errors as e:
            raise StorageError(f"Failed to create directory {path}: {e}")

    def remove_directory(self, path: str):
        """
        Remove a remote directory with all of its contents.

        Raises:
            StorageError: If anything cannot be removed
        """
        ftp = self._require_connection()

        for entry in self.list_entries(path):
            child = posixpath.join(path, entry.name)
            try:
                if entry.kind == KIND_DIR:
                    self.remove_directory(child)
                elif entry.kind == KIND_FILE:
                    ftp.delete(child)
                else:
                    try:
                        ftp.delete(child)
                    except ftplib.error_perm as e:
                        if not self._is_directory(child):
                            raise StorageError(f"Failed to remove {child}: {e}")
                        self.remove_directory(child)
            except ftplib.all_errors as e:
                raise StorageError(f"Failed to remove {child}: {e}")

        try:
            ftp.rmd(path)
        except ftplib.all_errors as e:
            raise StorageError(f"Failed to remove directory {path}: {e}")

    def _is_directory(self, path: str) -> bool:
        ftp = self._require_connection()
        try:
            ftp.cwd(path)
        except ftplib.error_perm:
            return False
        ftp.cwd('/')
        return True

    def upload(self, local_path: str, remote_path: str):
        """
        Upload a local file.

        Raises:
            TransferError: If the local file is missing or the upload fails
        """
        ftp = self._require_connection()

        if not os.path.exists(local_path):
            raise TransferError(f"Local file not found: {local_path}")

        try:
            with open(local_path, 'rb') as f:
                ftp.storbinary(f"STOR {remote_path}", f)
        except ftplib.all_errors as e:
            raise TransferError(f"Failed to upload {local_path} to {remote_path}: {e}")

    def close(self):
        if self.ftp is not None:
            try:
                self.ftp.quit()
            except Exception as e:
                logger.debug(f"FTP quit failed, closing socket: {e}")
                self._safe_close(self.ftp)
            self.ftp = None

    @staticmethod
    def _safe_close(ftp: ftplib.FTP):
        try:
            ftp.close()
        except Exception as e:
            logger.debug(f"Failed to close FTP connection: {e}")


class SFTPStorage(RemoteStorage):
    """
    Handler for SFTP endpoints.

    Authenticates with a password or a private key file.
    """

    protocol = 'sftp'

    def __init__(self, host: str, port: int = 22, username: Optional[str] = None,
                 password: Optional[str] = None, private_key: Optional[str] = None, **kwargs):
        super().__init__(host, port, username, password, **kwargs)
        self.private_key_path = private_key
        self.ssh_client = None
        self.sftp_client = None

    def connect(self):
        """
        Establish SSH connection and open an SFTP session.

        Raises:
            StorageConnectionError: If connection fails
        """
        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            # Prepare connection kwargs
            connect_kwargs = {
                'hostname': self.host,
                'port': self.port,
                'username': self.username,
                'timeout': 30
            }

            # Use password or private key
            if self.password:
                connect_kwargs['password'] = self.password
            elif self.private_key_path:
                key_path = os.path.expanduser(self.private_key_path)
                if not os.path.exists(key_path):
                    raise StorageConnectionError(f"Private key not found: {self.private_key_path}")
                connect_kwargs['key_filename'] = key_path
            else:
                raise StorageConnectionError("Either password or private_key must be provided")

            self.ssh_client.connect(**connect_kwargs)

            transport = self.ssh_client.get_transport()
            if transport is not None and self.keepalive:
                transport.set_keepalive(self.keepalive)

            self.sftp_client = self.ssh_client.open_sftp()
            self.sftp_client.get_channel().settimeout(self.timeout)

        except StorageConnectionError:
            self.close()
            raise
        except paramiko.AuthenticationException as e:
            self.close()
            raise StorageConnectionError(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise StorageConnectionError(f"SSH connection failed: {e}")
        except Exception as e:
            self.close()
            raise StorageConnectionError(f"Failed to connect to {self.host}: {e}")

        logger.debug(f"Connected to {self!r}")

    def _require_connection(self) -> paramiko.SFTPClient:
        if self.sftp_client is None:
            raise StorageError("Not connected")
        return self.sftp_client

    def list_entries(self, path: str = '/') -> List[RemoteEntry]:
        sftp = self._require_connection()

        try:
            return [
                RemoteEntry(
                    name=item.filename,
                    kind=KIND_DIR if stat.S_ISDIR(item.st_mode or 0) else KIND_FILE
                )
                for item in sftp.listdir_attr(path)
            ]
        except (IOError, paramiko.SSHException) as e:
            raise StorageError(f"Failed to list {path}: {e}")

    def ensure_directory(self, path: str):
        sftp = self._require_connection()

        current = ''
        for part in _split_path(path):
            current = f"{current}/{part}"
            try:
                sftp.stat(current)
            except FileNotFoundError:
                try:
                    sftp.mkdir(current)
                except (IOError, paramiko.SSHException) as e:
                    raise StorageError(f"Failed to create directory {current}: {e}")
            except (IOError, paramiko.SSHException) as e:
                raise StorageError(f"Failed to create directory {current}: {e}")

    def remove_directory(self, path: str):
        sftp = self._require_connection()

        for entry in self.list_entries(path):
            child = posixpath.join(path, entry.name)
            if entry.kind == KIND_DIR:
                self.remove_directory(child)
            else:
                try:
                    sftp.remove(child)
                except (IOError, paramiko.SSHException) as e:
                    raise StorageError(f"Failed to remove {child}: {e}")

        try:
            sftp.rmdir(path)
        except (IOError, paramiko.SSHException) as e:
            raise StorageError(f"Failed to remove directory {path}: {e}")

    def upload(self, local_path: str, remote_path: str):
        sftp = self._require_connection()

        if not os.path.exists(local_path):
            raise TransferError(f"Local file not found: {local_path}")

        try:
            sftp.put(local_path, remote_path)
        except (IOError, paramiko.SSHException) as e:
            raise TransferError(f"Failed to upload {local_path} to {remote_path}: {e}")

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Failed to close SFTP session: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Failed to close SSH connection: {e}")
            self.ssh_client = None


def create_storage(config) -> RemoteStorage:
    """
    Factory function to create the remote storage handler for a config.

    Args:
        config: Config instance

    Returns:
        FTPStorage or SFTPStorage instance (not yet connected)

    Raises:
        ValueError: If REMOTE_PROTOCOL is invalid
    """
    common = {
        'host': config.REMOTE_HOST,
        'port': config.REMOTE_PORT,
        'username': config.REMOTE_USER,
        'password': config.REMOTE_PASS,
        'timeout': config.REMOTE_TIMEOUT,
        'keepalive': config.REMOTE_KEEPALIVE,
        'verbose': config.LOGGING_FTP,
    }

    if config.REMOTE_PROTOCOL == 'ftp':
        return FTPStorage(secure=config.REMOTE_SECURE, **common)
    elif config.REMOTE_PROTOCOL == 'sftp':
        return SFTPStorage(private_key=config.REMOTE_KEY_FILE, **common)
    else:
        raise ValueError(f"Invalid remote protocol: {config.REMOTE_PROTOCOL}")
