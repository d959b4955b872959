import os
import logging

__version__ = '1.0.0'


def truncate_log_file(log_file: str, max_bytes: int) -> bool:
    """
    Empty the log file if it has grown beyond max_bytes.

    Args:
        log_file: Path to the log file
        max_bytes: Size limit in bytes

    Returns:
        True if the file was truncated
    """
    try:
        size = os.path.getsize(log_file)
    except OSError:
        return False

    if size > max_bytes:
        with open(log_file, 'w'):
            pass
        return True
    return False


def configure_logging(config):
    """Configure application logging"""

    os.makedirs(config.WORK_DIR, exist_ok=True)
    truncated = truncate_log_file(config.LOG_FILE, config.LOG_FILE_MAX_BYTES)

    # File gets everything, console only what LOGGING asks for
    file_level = logging.DEBUG if config.DEBUG else logging.INFO
    console_level = logging.INFO if config.LOGGING else logging.WARNING
    if config.DEBUG:
        console_level = logging.DEBUG

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = logging.FileHandler(config.LOG_FILE, mode='a')
    file_handler.setLevel(file_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(min(file_level, console_level))
    root.addHandler(console_handler)
    root.addHandler(file_handler)

    # Protocol chatter from paramiko is noisy unless explicitly requested
    paramiko_level = logging.DEBUG if config.LOGGING_FTP else logging.WARNING
    logging.getLogger('paramiko').setLevel(paramiko_level)

    logger = logging.getLogger(__name__)
    if truncated:
        logger.info(f"Log file exceeded {config.LOG_FILE_MAX_BYTES} bytes and was truncated")
    logger.debug(f"Logging configured (file level: {logging.getLevelName(file_level)}, "
                 f"console level: {logging.getLevelName(console_level)})")
