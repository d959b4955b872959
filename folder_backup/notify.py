"""
Telegram notifications for backup runs.

Sending is best effort: a missing token, a network error or an error
response is logged and reported as False, never raised.
"""

import logging
from typing import Optional

import requests


logger = logging.getLogger(__name__)

TELEGRAM_API_URL = 'https://api.telegram.org'


class NotificationError(Exception):
    """Raised internally when a notification cannot be delivered."""
    pass


class TelegramNotifier:
    """
    Client for sending run reports to a Telegram chat via the Bot API.
    """

    def __init__(
        self,
        token: Optional[str],
        chat_id: Optional[str],
        node_name: Optional[str] = None,
        silent_success: bool = True,
        timeout: int = 10
    ):
        """
        Initialize notifier.

        Args:
            token: Bot token, with or without the 'bot' prefix
            chat_id: Target chat id
            node_name: Identity of this node, included in every message
            silent_success: Deliver success messages without sound
            timeout: HTTP timeout in seconds
        """
        self.token = token
        self.chat_id = chat_id
        self.node_name = node_name
        self.silent_success = silent_success
        self.timeout = timeout

        if not self.is_configured:
            logger.warning("Telegram bot token or chat id not provided. Notifications will be logged only.")

    @classmethod
    def from_config(cls, config) -> 'TelegramNotifier':
        return cls(
            token=config.TELEGRAM_BOT_TOKEN,
            chat_id=config.TELEGRAM_CHAT_ID,
            node_name=config.NODE_NAME,
            silent_success=config.SILENT_SUCCESS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.token and self.chat_id)

    @property
    def api_url(self) -> str:
        token = self.token if self.token.startswith('bot') else f"bot{self.token}"
        return f"{TELEGRAM_API_URL}/{token}/sendMessage"

    def format_message(self, message: str, is_error: bool) -> str:
        node = self.node_name or 'unknown'
        if is_error:
            return f"Error while creating backup on node {node}. Logs: {message}"
        return f"[{node}] {message}"

    def notify(self, message: str, is_error: bool = False) -> bool:
        """
        Send a message.

        Args:
            message: Text to send
            is_error: Error messages are always delivered with sound

        Returns:
            True if the message was delivered
        """
        text = self.format_message(message, is_error)
        log = logger.error if is_error else logger.info
        log(f"Notification: {text}")

        if not self.is_configured:
            logger.warning("Cannot send notification: Telegram is not configured")
            return False

        try:
            self._send(text, silent=self.silent_success and not is_error)
        except NotificationError as e:
            logger.error(f"Failed to send notification: {e}")
            return False

        logger.debug("Notification sent")
        return True

    def _send(self, text: str, silent: bool):
        payload = {
            'chat_id': self.chat_id,
            'text': text,
            'disable_notification': silent,
        }

        try:
            response = requests.post(self.api_url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Network error: {e}")

        if not response.ok:
            raise NotificationError(f"{response.status_code} - {response.text}")
