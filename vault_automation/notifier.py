from __future__ import annotations

import html
import logging
from typing import Any

from telegram import Bot
from telegram.constants import ParseMode

from vault_automation.message_utils import split_message
from vault_automation.redaction import redact_text


logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Default notifier: execution summaries go to the log."""

    async def notify(self, text: str) -> None:
        logger.info(text, extra={"event": "notification"})


class TelegramNotifier:
    def __init__(self, token: str, chat_id: int, bot: Any | None = None) -> None:
        self._chat_id = chat_id
        self._bot = bot or Bot(token=token)

    async def notify(self, text: str) -> None:
        message = "<b>Vault automation</b>\n" + html.escape(redact_text(text))
        try:
            for chunk in split_message(message):
                await self._bot.send_message(
                    chat_id=self._chat_id,
                    text=chunk,
                    parse_mode=ParseMode.HTML,
                    disable_web_page_preview=True,
                )
        except Exception as exc:
            logger.warning(
                "failed to send telegram notification",
                extra={"event": "telegram_notify_error", "error": str(exc)},
            )
