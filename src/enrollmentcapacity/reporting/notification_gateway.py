"""
Notification delivery seam for the waitlist and enrollment services.

Services hand a NotificationRequest to a gateway and never wait on the
outcome: delivery problems are logged and do not change the result of the
operation that produced the message.
"""

import uuid
from abc import ABC, abstractmethod
from typing import List

from ..core import get_logger
from ..models import NotificationRequest

logger = get_logger(__name__)


class NotificationGateway(ABC):
    """Abstract base class for notification gateways."""

    def __init__(self, name: str):
        self.name = name
        self.logger = get_logger(f"{__name__}.{name}")

    @abstractmethod
    async def send(self, request: NotificationRequest) -> str:
        """Deliver a notification and return a delivery id."""


class LoggingNotificationGateway(NotificationGateway):
    """Gateway that only logs messages and keeps them for inspection."""

    def __init__(self):
        super().__init__("logging")
        self.sent: List[NotificationRequest] = []

    async def send(self, request: NotificationRequest) -> str:
        self.sent.append(request)
        self.logger.info(
            f"[{request.notification_type.value}] to {request.user_id}: {request.title}"
        )
        return str(uuid.uuid4())


async def deliver_notification(
    gateway: NotificationGateway, request: NotificationRequest
) -> bool:
    """
    Send a notification without letting delivery errors escape.

    Returns:
        bool: True when the gateway accepted the message
    """
    try:
        await gateway.send(request)
        return True
    except Exception as e:
        logger.warning(
            f"Failed to deliver {request.notification_type.value} "
            f"notification to {request.user_id}: {e}"
        )
        return False
