"""
Telegram Messenger

Sends and edits user messages through the Telegram Bot HTTP API. Calls are
made with requests on a worker thread so the event loop keeps running.
"""

import asyncio
import logging

import requests

from monitoring.errors import NotificationDispatchError

logger = logging.getLogger(__name__)

CONFLICT_ERROR_CODE = 409
NOT_MODIFIED_MARKER = "message is not modified"


class TelegramMessenger:
    """
    Args:
        config (TelegramConfig): Bot token, API URL and request timeout
        session (requests.Session, optional): HTTP session to reuse
    """

    def __init__(self, config, session=None):
        if not config.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is not set")
        self.config = config
        self.session = session or requests.Session()

    def _method_url(self, method):
        return f"{self.config.api_url.rstrip('/')}/bot{self.config.bot_token}/{method}"

    def _call(self, method, payload):
        """
        Call a Bot API method and return its result.

        Raises:
            NotificationDispatchError: On transport errors or an API error answer;
                conflict=True for HTTP 409
        """
        try:
            resp = self.session.post(
                self._method_url(method),
                json=payload,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise NotificationDispatchError(f"{method} request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code == 200 and data.get("ok"):
            return data.get("result")

        error_code = data.get("error_code", resp.status_code)
        description = data.get("description") or resp.text or f"HTTP {resp.status_code}"
        raise NotificationDispatchError(
            f"{method} failed: {description}",
            conflict=error_code == CONFLICT_ERROR_CODE,
            error_code=error_code,
        )

    def _send_message_sync(self, user_id, text):
        return self._call("sendMessage", {
            "chat_id": user_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        })

    def _edit_message_sync(self, user_id, message_id, text):
        try:
            return self._call("editMessageText", {
                "chat_id": user_id,
                "message_id": message_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            })
        except NotificationDispatchError as e:
            if NOT_MODIFIED_MARKER in str(e).lower():
                logger.debug(f"Message {message_id} for user {user_id} already up to date")
                return None
            raise

    async def send_message(self, user_id, text):
        result = await asyncio.to_thread(self._send_message_sync, user_id, text)
        logger.debug(f"Message sent to user {user_id}")
        return result

    async def edit_message(self, user_id, message_id, text):
        return await asyncio.to_thread(self._edit_message_sync, user_id, message_id, text)

    def close(self):
        self.session.close()
