"""
Generic JSON webhook notifier.
"""

import requests

from .base import Notification, Notifier, NotificationResult


class WebhookNotifier(Notifier):
    """POSTs the notification's data payload to an arbitrary URL."""

    channel = "webhook"

    def __init__(self, url: str, timeout: float = 10):
        self.url = url
        self.timeout = timeout

    def send(self, notification: Notification) -> NotificationResult:
        """Send notification data as JSON."""
        payload = notification.data or {
            "subject": notification.subject,
            "message": notification.body,
            "timestamp": notification.created_at.isoformat(),
        }
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return NotificationResult(success=True, channel=self.channel, target=self.url)
        except requests.RequestException as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=str(e),
                target=self.url,
            )
