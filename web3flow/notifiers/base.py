"""
Base notifier classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from web3flow.config import NotificationsConfig


@dataclass
class Notification:
    """
    A rendered message, ready for any channel.

    Channels pick the parts they understand: Discord uses ``embed`` when set
    and ``body`` as plain content otherwise, email uses ``subject`` and
    ``body``, and the generic webhook posts ``data``.
    """

    subject: str
    body: str
    embed: Optional[dict[str, Any]] = None
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Delivery:
    """One planned send of a notification to a channel endpoint."""

    channel: str
    target: str
    notification: Notification


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None
    target: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notifiers."""

    channel = ""

    @abstractmethod
    def send(self, notification: Notification) -> NotificationResult:
        """
        Send a single notification.

        Args:
            notification: Notification to send

        Returns:
            NotificationResult indicating success or failure
        """
        pass


class NotifierFactory:
    """Factory for creating notifier instances."""

    def __init__(self, config: Optional[NotificationsConfig] = None):
        self.config = config or NotificationsConfig()

    def create(self, channel: str, target: str) -> Notifier:
        """
        Create a notifier for a channel endpoint.

        Args:
            channel: "discord", "email" or "webhook"
            target: Webhook URL or recipient email address

        Returns:
            Appropriate Notifier instance

        Raises:
            ValueError: If channel is unknown
        """
        timeout = self.config.channel_timeout_seconds

        if channel == "discord":
            from .discord import DiscordNotifier

            return DiscordNotifier(webhook_url=target, timeout=timeout)

        elif channel == "email":
            from .email import EmailNotifier

            email = self.config.email
            return EmailNotifier(
                smtp_host=email.smtp_host,
                smtp_port=int(email.smtp_port),
                smtp_user=email.smtp_user,
                smtp_password=email.smtp_password,
                from_address=email.from_address,
                to_addresses=[target],
                from_name=email.from_name,
                timeout=timeout,
            )

        elif channel == "webhook":
            from .webhook import WebhookNotifier

            return WebhookNotifier(url=target, timeout=timeout)

        else:
            raise ValueError(f"Unknown notifier type: {channel}")
