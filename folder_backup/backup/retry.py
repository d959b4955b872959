"""
Fixed-delay retry for transient operations such as uploads.
"""

import time
import logging
from typing import Callable, Optional, TypeVar

from folder_backup.models import RetryState


logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 5 * 60


class UploadError(Exception):
    """Raised when an operation still fails after all retry attempts."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def retry_call(
    operation: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay: float = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    description: str = 'operation',
    on_attempt: Optional[Callable[[RetryState], None]] = None
) -> T:
    """
    Call operation until it succeeds or max_attempts is reached.

    Waits a fixed delay between attempts; no backoff, no jitter.

    Args:
        operation: Zero-argument callable to invoke
        max_attempts: Total number of invocations allowed
        delay: Seconds to wait between attempts
        sleep: Function used to wait (time.sleep)
        description: Used in log and error messages
        on_attempt: Called with the RetryState before each attempt

    Returns:
        Whatever operation returns

    Raises:
        UploadError: After the last attempt fails, chained from that failure
    """
    state = RetryState(max_attempts=max(1, max_attempts), delay=delay)
    last_error = None

    while not state.exhausted:
        attempt = state.next_attempt()
        if on_attempt is not None:
            on_attempt(state)

        try:
            return operation()
        except Exception as e:
            last_error = e
            logger.warning(f"{description} failed (attempt {attempt}/{state.max_attempts}): {e}")

        if not state.exhausted:
            logger.info(f"Waiting {state.delay}s before retrying {description}...")
            sleep(state.delay)

    raise UploadError(
        f"{description} failed after {state.max_attempts} attempts: {last_error}",
        attempts=state.attempt
    ) from last_error
