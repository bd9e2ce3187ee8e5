"""
Telegram delivery for waitlist offers, reminders and enrollment decisions.
"""

import uuid
from typing import Dict, Optional

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from ..config import get_setting
from ..core.exceptions import ConfigurationError, NotificationError
from ..models import NotificationRequest
from .notification_gateway import NotificationGateway

# Telegram message limit is 4096, leave some room
MAX_MESSAGE_LENGTH = 4000


class TelegramNotifier(NotificationGateway):
    """Telegram notification gateway with configuration management."""

    def __init__(
        self,
        bot: Optional[Bot] = None,
        chat_id: Optional[str] = None,
        recipients: Optional[Dict[str, str]] = None,
        dry_run: Optional[bool] = None,
    ):
        super().__init__("telegram")
        self.chat_id = chat_id or get_setting("telegram", "chat_id")
        self.recipients = dict(
            recipients
            if recipients is not None
            else get_setting("telegram", "recipients", {})
        )
        self.dry_run = (
            dry_run if dry_run is not None else get_setting("notifications", "dry_run", False)
        )

        if bot is None:
            bot_token = get_setting("telegram", "bot_token")
            if not bot_token and not self.dry_run:
                raise ConfigurationError("Telegram bot token is not configured")
            bot = Bot(token=bot_token) if bot_token else None
        self.bot = bot

    def resolve_chat_id(self, user_id: str) -> Optional[str]:
        """Chat id for a user, falling back to the default chat."""
        return self.recipients.get(user_id, self.chat_id)

    @staticmethod
    def format_message(request: NotificationRequest) -> str:
        text = f"*{request.title}*\n{request.message}"
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 3] + "..."
        return text

    async def send(self, request: NotificationRequest) -> str:
        """
        Send a notification as a Telegram message.

        Returns:
            str: Telegram message id, or a generated id in dry-run mode

        Raises:
            NotificationError: No chat is configured for the recipient
        """
        chat_id = self.resolve_chat_id(request.user_id)
        text = self.format_message(request)

        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would send to {request.user_id}: {request.title}")
            return f"dry-run-{uuid.uuid4()}"

        if not chat_id:
            raise NotificationError(f"No Telegram chat configured for {request.user_id}")

        try:
            message = await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
            )
            self.logger.info(
                f"Sent {request.notification_type.value} notification to {request.user_id}"
            )
            return str(message.message_id)
        except TelegramError as e:
            self.logger.error(f"Error sending notification to {request.user_id}: {e}")
            raise NotificationError(f"Telegram delivery failed: {e}") from e

    async def send_report(self, content: str) -> bool:
        """Send a plain-text report to the default chat as a code block."""
        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would send report:\n{content[:1000]}")
            return True

        if not self.chat_id:
            raise NotificationError("No default Telegram chat configured")

        chunks = [
            content[i : i + MAX_MESSAGE_LENGTH]
            for i in range(0, len(content), MAX_MESSAGE_LENGTH)
        ] or [""]
        try:
            for chunk in chunks:
                await self.bot.send_message(
                    chat_id=self.chat_id,
                    text=f"```\n{chunk}\n```",
                    parse_mode=ParseMode.MARKDOWN_V2,
                )
            return True
        except TelegramError as e:
            self.logger.error(f"Error sending report: {e}")
            return False
