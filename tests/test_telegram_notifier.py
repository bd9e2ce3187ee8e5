from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.constants import ParseMode
from telegram.error import TelegramError

from enrollmentcapacity.core.exceptions import ConfigurationError, NotificationError
from enrollmentcapacity.models import NotificationRequest, NotificationType
from enrollmentcapacity.reporting.notification_gateway import (
    LoggingNotificationGateway,
    deliver_notification,
)
from enrollmentcapacity.reporting.telegram_notifier import (
    MAX_MESSAGE_LENGTH,
    TelegramNotifier,
)


@pytest.fixture
def request_for_s1():
    return NotificationRequest(
        user_id="S1",
        notification_type=NotificationType.ENROLLMENT_AVAILABLE,
        title="Enrollment spot available",
        message="A spot opened in Class C1.",
    )


@pytest.fixture
def bot():
    mock_bot = AsyncMock()
    mock_bot.send_message.return_value = MagicMock(message_id=42)
    return mock_bot


@pytest.fixture
def notifier(bot):
    return TelegramNotifier(
        bot=bot,
        chat_id="default-chat",
        recipients={"S1": "chat-s1"},
        dry_run=False,
    )


@pytest.mark.asyncio
async def test_send_uses_recipient_chat(notifier, bot, request_for_s1):
    """Messages go to the recipient's own chat with markdown formatting."""
    message_id = await notifier.send(request_for_s1)

    assert message_id == "42"
    call_args = bot.send_message.call_args
    assert call_args.kwargs["chat_id"] == "chat-s1"
    assert call_args.kwargs["parse_mode"] == ParseMode.MARKDOWN
    assert call_args.kwargs["text"].startswith("*Enrollment spot available*\n")


@pytest.mark.asyncio
async def test_send_falls_back_to_default_chat(notifier, bot, request_for_s1):
    request_for_s1.user_id = "S9"

    await notifier.send(request_for_s1)

    assert bot.send_message.call_args.kwargs["chat_id"] == "default-chat"


@pytest.mark.asyncio
async def test_send_without_any_chat(bot, request_for_s1):
    notifier = TelegramNotifier(bot=bot, chat_id=None, recipients={}, dry_run=False)

    with pytest.raises(NotificationError):
        await notifier.send(request_for_s1)
    bot.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_send_wraps_telegram_errors(notifier, bot, request_for_s1):
    bot.send_message.side_effect = TelegramError("Forbidden: bot was blocked")

    with pytest.raises(NotificationError) as exc_info:
        await notifier.send(request_for_s1)
    assert "bot was blocked" in str(exc_info.value)


@pytest.mark.asyncio
async def test_dry_run_skips_telegram(bot, request_for_s1):
    notifier = TelegramNotifier(bot=bot, chat_id="default-chat", dry_run=True)

    message_id = await notifier.send(request_for_s1)

    assert message_id.startswith("dry-run-")
    bot.send_message.assert_not_called()


def test_long_messages_are_truncated(request_for_s1):
    request_for_s1.message = "x" * (MAX_MESSAGE_LENGTH + 100)

    text = TelegramNotifier.format_message(request_for_s1)

    assert len(text) == MAX_MESSAGE_LENGTH
    assert text.endswith("...")


def test_settings_provide_defaults(settings_file):
    notifier = TelegramNotifier(bot=AsyncMock())

    assert notifier.chat_id == "default-chat"
    assert notifier.resolve_chat_id("S1") == "chat-s1"
    assert notifier.resolve_chat_id("S2") == "default-chat"
    assert notifier.dry_run is True


def test_missing_token_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        TelegramNotifier(chat_id="default-chat", dry_run=False)


@pytest.mark.asyncio
async def test_send_report_in_chunks(notifier, bot):
    content = "a" * (MAX_MESSAGE_LENGTH + 10)

    assert await notifier.send_report(content) is True

    assert bot.send_message.call_count == 2
    first = bot.send_message.call_args_list[0].kwargs
    assert first["chat_id"] == "default-chat"
    assert first["parse_mode"] == ParseMode.MARKDOWN_V2
    assert first["text"].startswith("```\n")


@pytest.mark.asyncio
async def test_send_report_failure_returns_false(notifier, bot):
    bot.send_message.side_effect = TelegramError("Timed out")

    assert await notifier.send_report("report") is False


@pytest.mark.asyncio
async def test_deliver_notification_swallows_gateway_errors(request_for_s1):
    gateway = MagicMock()
    gateway.send = AsyncMock(side_effect=NotificationError("Telegram delivery failed"))

    assert await deliver_notification(gateway, request_for_s1) is False


@pytest.mark.asyncio
async def test_logging_gateway_records_messages(request_for_s1):
    gateway = LoggingNotificationGateway()

    assert await deliver_notification(gateway, request_for_s1) is True
    assert gateway.sent == [request_for_s1]
