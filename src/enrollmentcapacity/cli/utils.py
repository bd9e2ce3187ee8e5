from dataclasses import dataclass
from typing import Optional

from ..automation.sweeper import WaitlistSweeper
from ..config import get_setting
from ..core import get_logger
from ..data.database_manager import DatabaseManager
from ..reporting.notification_gateway import (
    LoggingNotificationGateway,
    NotificationGateway,
)
from ..reporting.telegram_notifier import TelegramNotifier
from ..services import EnrollmentCoordinator, SectionPlanner, WaitlistManager


@dataclass
class Services:
    """Service graph shared by one CLI invocation."""

    store: DatabaseManager
    gateway: NotificationGateway
    waitlist_manager: WaitlistManager
    coordinator: EnrollmentCoordinator
    planner: SectionPlanner
    sweeper: WaitlistSweeper


def build_gateway(no_telegram: bool = False, debug: bool = False) -> NotificationGateway:
    """Telegram when a bot token is configured, the logging gateway otherwise."""
    if no_telegram or not get_setting("telegram", "bot_token"):
        if debug:
            print("🔍 DEBUG: Telegram disabled, notifications are only logged")
        return LoggingNotificationGateway()
    return TelegramNotifier()


def build_services(
    db_path: Optional[str] = None, no_telegram: bool = False, debug: bool = False
) -> Services:
    """Wire the store, gateway and services together."""
    logger = get_logger(__name__)
    store = DatabaseManager(db_path)
    gateway = build_gateway(no_telegram=no_telegram, debug=debug)
    waitlist_manager = WaitlistManager(store, gateway)
    coordinator = EnrollmentCoordinator(store, waitlist_manager, gateway)
    planner = SectionPlanner(store)
    sweeper = WaitlistSweeper(waitlist_manager, coordinator)
    logger.debug(f"Services ready (database: {store.db_path}, gateway: {gateway.name})")
    return Services(
        store=store,
        gateway=gateway,
        waitlist_manager=waitlist_manager,
        coordinator=coordinator,
        planner=planner,
        sweeper=sweeper,
    )
