"""
Discord webhook notifier.
"""

import time
from typing import Any

import requests

from .base import Notification, Notifier, NotificationResult


class DiscordNotifier(Notifier):
    """Sends notifications via Discord webhook."""

    channel = "discord"

    # Discord embed colors
    COLOR_SUCCESS = 0xFFFF00  # Yellow
    COLOR_FAILURE = 0xED4245  # Red
    COLOR_ALERT = 0x3498DB  # Blue
    COLOR_STATUS = 0x2ECC71  # Green

    # Discord rejects content longer than this
    MAX_CONTENT_LENGTH = 2000

    def __init__(self, webhook_url: str, timeout: float = 10):
        """
        Initialize Discord notifier.

        Args:
            webhook_url: Discord webhook URL
            timeout: Seconds to wait for Discord to answer
        """
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send(self, notification: Notification) -> NotificationResult:
        """Send notification to Discord."""
        try:
            payload = self._create_payload(notification)
            response = self._send_webhook(payload)

            if response.ok:
                return NotificationResult(
                    success=True, channel=self.channel, target=self.webhook_url
                )
            else:
                return NotificationResult(
                    success=False,
                    channel=self.channel,
                    error=f"HTTP {response.status_code}: {response.text}",
                    target=self.webhook_url,
                )

        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"Connection error: {str(e)}",
                target=self.webhook_url,
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=str(e),
                target=self.webhook_url,
            )

    def _send_webhook(self, payload: dict[str, Any]) -> requests.Response:
        """Send webhook with rate limit handling."""
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=self.timeout,
        )

        # Handle rate limiting
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "1")
            time.sleep(min(float(retry_after), self.timeout))
            response = requests.post(
                self.webhook_url,
                json=payload,
                timeout=self.timeout,
            )

        return response

    def _create_payload(self, notification: Notification) -> dict[str, Any]:
        """Create Discord webhook payload."""
        if notification.embed:
            embed = dict(notification.embed)
            embed.setdefault("timestamp", notification.created_at.isoformat())
            return {"embeds": [embed]}

        return {"content": notification.body[: self.MAX_CONTENT_LENGTH]}


def build_embed(
    title: str,
    color: int,
    fields: list[tuple[str, str, bool]],
    footer_text: str = "",
    description: str = "",
) -> dict[str, Any]:
    """
    Build a Discord embed dict.

    Args:
        title: Embed title
        color: Embed color as an int
        fields: (name, value, inline) triples
        footer_text: Optional footer
        description: Optional description

    Returns:
        Embed dict suitable for Notification.embed
    """
    embed: dict[str, Any] = {
        "title": title,
        "color": color,
        "fields": [
            {"name": name, "value": value, "inline": inline}
            for name, value, inline in fields
        ],
    }
    if description:
        embed["description"] = description
    if footer_text:
        embed["footer"] = {"text": footer_text}
    return embed
