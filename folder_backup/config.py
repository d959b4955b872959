import os
from typing import Mapping, Optional


class ConfigurationError(Exception):
    """Raised when a required setting is missing or invalid."""
    pass


DEFAULT_BACKUPS_LIMIT = 5
LOG_FILE_MAX_BYTES = 1024 * 1024 * 1024  # 1GB

TRUE_VALUES = ('true', '1', 'yes', 'on')

# Legacy variable names, kept so older .env files keep working
LEGACY_ALIASES = {
    'REMOTE_HOST': 'FTP_HOST',
    'REMOTE_USER': 'FTP_USER',
    'REMOTE_PASS': 'FTP_PASS',
    'REMOTE_SECURE': 'FTP_SECURE',
}


def _get(environ: Mapping[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    value = environ.get(key)
    if (value is None or value == '') and key in LEGACY_ALIASES:
        value = environ.get(LEGACY_ALIASES[key])
    if value is None or value == '':
        return default
    return value


def _get_bool(environ: Mapping[str, str], key: str, default: bool = False) -> bool:
    value = _get(environ, key)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def _get_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = _get(environ, key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got: {value!r}")


def parse_backups_limit(value: Optional[str]) -> int:
    """
    Parse the retention limit.

    Anything that is not a positive integer falls back to the default.
    """
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_BACKUPS_LIMIT
    return limit if limit > 0 else DEFAULT_BACKUPS_LIMIT


class Config:
    """Base configuration"""

    DEBUG = False

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        if environ is None:
            environ = os.environ

        # Parse errors are reported by validate() together with missing settings
        self.errors = []

        # Source
        self.SOURCE_DIR = _get(environ, 'SOURCE_DIR')

        # Remote endpoint
        self.REMOTE_PROTOCOL = (_get(environ, 'REMOTE_PROTOCOL', 'ftp')).lower()
        self.REMOTE_HOST = _get(environ, 'REMOTE_HOST')
        self.REMOTE_USER = _get(environ, 'REMOTE_USER')
        self.REMOTE_PASS = _get(environ, 'REMOTE_PASS')
        self.REMOTE_SECURE = _get_bool(environ, 'REMOTE_SECURE')
        self.REMOTE_KEY_FILE = _get(environ, 'REMOTE_KEY_FILE')
        default_port = 22 if self.REMOTE_PROTOCOL == 'sftp' else 21
        self.REMOTE_PORT = self._get_int(environ, 'REMOTE_PORT', default_port)
        self.REMOTE_TIMEOUT = self._get_int(environ, 'REMOTE_TIMEOUT', 600)
        self.REMOTE_KEEPALIVE = self._get_int(environ, 'REMOTE_KEEPALIVE', 30)

        # Backup policy
        self.BACKUPS_LIMIT = parse_backups_limit(_get(environ, 'BACKUPS_LIMIT'))
        self.BACKUP_PREFIX = _get(environ, 'BACKUP_PREFIX', 'backups-')
        self.COPY_BEFORE_BACKUP = _get_bool(environ, 'COPY_BEFORE_BACKUP')
        self.COMPRESSION = (_get(environ, 'COMPRESSION', 'gz')).lower()
        self.UPLOAD_ATTEMPTS = max(1, self._get_int(environ, 'UPLOAD_ATTEMPTS', 3))
        self.UPLOAD_RETRY_DELAY = max(0, self._get_int(environ, 'UPLOAD_RETRY_DELAY', 300))

        # Notifications
        self.TELEGRAM_BOT_TOKEN = _get(environ, 'TELEGRAM_BOT_TOKEN')
        self.TELEGRAM_CHAT_ID = _get(environ, 'TELEGRAM_CHAT_ID')
        self.ONLY_ON_ERROR = _get_bool(environ, 'ONLY_ON_ERROR')
        self.SILENT_SUCCESS = _get_bool(environ, 'SILENT_SUCCESS', default=True)
        self.NODE_NAME = _get(environ, 'NODE_NAME') or (self.REMOTE_USER or '').upper() or None

        # Logging
        self.LOGGING = _get_bool(environ, 'LOGGING')
        self.LOGGING_FTP = _get_bool(environ, 'LOGGING_FTP')

        # Local working directory: holds tmp/ and backup.log
        self.WORK_DIR = os.path.abspath(_get(environ, 'WORK_DIR', os.getcwd()))
        self.TEMP_DIR = os.path.join(self.WORK_DIR, 'tmp')
        self.LOG_FILE = os.path.join(self.WORK_DIR, 'backup.log')
        self.LOG_FILE_MAX_BYTES = LOG_FILE_MAX_BYTES

    def _get_int(self, environ: Mapping[str, str], key: str, default: int) -> int:
        try:
            return _get_int(environ, key, default)
        except ConfigurationError as e:
            self.errors.append(str(e))
            return default

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        return cls(environ)

    def validate(self):
        """
        Check that all required settings are present.

        Raises:
            ConfigurationError: Listing every missing or invalid setting
        """
        errors = list(self.errors)

        if not self.SOURCE_DIR:
            errors.append("SOURCE_DIR is not set")
        if not self.REMOTE_HOST:
            errors.append("REMOTE_HOST is not set")
        if self.REMOTE_PROTOCOL not in ('ftp', 'sftp'):
            errors.append(f"REMOTE_PROTOCOL must be 'ftp' or 'sftp', got: {self.REMOTE_PROTOCOL!r}")
        if self.REMOTE_PROTOCOL == 'sftp' and not (self.REMOTE_PASS or self.REMOTE_KEY_FILE):
            errors.append("REMOTE_PASS or REMOTE_KEY_FILE must be set for sftp")

        from folder_backup.backup.compression import COMPRESSION_FORMATS
        if self.COMPRESSION not in COMPRESSION_FORMATS:
            errors.append(
                f"COMPRESSION must be one of {list(COMPRESSION_FORMATS.keys())}, "
                f"got: {self.COMPRESSION!r}"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

    def as_dict(self, mask_secrets: bool = True) -> dict:
        """Return settings as a dict, with secrets masked by default."""
        secret_keys = ('REMOTE_PASS', 'TELEGRAM_BOT_TOKEN')
        result = {}
        for key, value in sorted(vars(self).items()):
            if not key.isupper():
                continue
            if mask_secrets and key in secret_keys and value:
                value = '********'
            result[key] = value
        result['DEBUG'] = self.DEBUG
        return result


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        super().__init__(environ)
        self.LOGGING = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def load_config(config_name: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build the configuration for this run.

    Args:
        config_name: 'development' or 'production' (default: BACKUP_ENV or production)
        environ: Environment mapping (default: os.environ)

    Returns:
        Config instance

    Raises:
        ConfigurationError: If config_name is unknown
    """
    if environ is None:
        environ = os.environ
    if config_name is None:
        config_name = environ.get('BACKUP_ENV') or 'production'

    if config_name not in config:
        raise ConfigurationError(
            f"Invalid configuration name: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )

    return config[config_name](environ)
