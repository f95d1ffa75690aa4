"""
Notifier tests.
Tests for Discord, email and webhook delivery, and the dispatcher.
"""

import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from web3flow.config import EmailNotificationConfig, NotificationsConfig
from web3flow.notifiers.base import Delivery, Notification, NotificationResult, Notifier, NotifierFactory
from web3flow.notifiers.discord import DiscordNotifier, build_embed
from web3flow.notifiers.dispatcher import NotificationDispatcher
from web3flow.notifiers.email import EmailNotifier
from web3flow.notifiers.webhook import WebhookNotifier


@pytest.fixture
def embed_notification():
    """Notification carrying a Discord embed."""
    return Notification(
        subject="Workflow Executed: Treasury",
        body="Workflow \"Treasury\" was triggered.\nAmount: 1.5 ETH",
        embed=build_embed(
            title="🔔 Transfer Detected: Treasury",
            color=DiscordNotifier.COLOR_SUCCESS,
            fields=[("Amount", "**1.5 ETH**", True)],
            footer_text="Powered by Web3Flow",
        ),
        data={"workflowName": "Treasury", "status": "success"},
        created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def plain_notification():
    """Notification with plain text only."""
    return Notification(subject="Hello", body="Treasury got 1.5 ETH")


class TestNotificationResult:
    """Test NotificationResult model."""

    def test_success_result(self):
        """Should create success result."""
        result = NotificationResult(success=True, channel="discord")
        assert result.success is True
        assert result.channel == "discord"
        assert result.error is None

    def test_failure_result(self):
        """Should create failure result with error."""
        result = NotificationResult(
            success=False, channel="email", error="SMTP connection failed"
        )
        assert result.success is False
        assert result.error == "SMTP connection failed"


class TestDiscordNotifier:
    """Test Discord webhook notifications."""

    @pytest.fixture
    def notifier(self, sample_discord_webhook_url):
        """Create Discord notifier."""
        return DiscordNotifier(webhook_url=sample_discord_webhook_url)

    def test_send_notification_success(self, notifier: DiscordNotifier, embed_notification):
        """Should send notification successfully."""
        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 204
            mock_post.return_value.ok = True

            result = notifier.send(embed_notification)

        assert result.success is True
        assert result.channel == "discord"
        mock_post.assert_called_once()

    def test_send_notification_failure(self, notifier: DiscordNotifier, embed_notification):
        """Should report HTTP errors."""
        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 400
            mock_post.return_value.ok = False
            mock_post.return_value.text = "Bad Request"

            result = notifier.send(embed_notification)

        assert result.success is False
        assert result.error == "HTTP 400: Bad Request"

    def test_embed_payload(self, notifier: DiscordNotifier, embed_notification):
        """Should send the embed with a timestamp."""
        payload = notifier._create_payload(embed_notification)

        embed = payload["embeds"][0]
        assert embed["title"] == "🔔 Transfer Detected: Treasury"
        assert embed["color"] == 0xFFFF00
        assert embed["timestamp"] == "2024-05-01T12:00:00+00:00"
        assert embed["footer"]["text"] == "Powered by Web3Flow"
        assert "content" not in payload

    def test_plain_content_payload(self, notifier: DiscordNotifier, plain_notification):
        """Should send plain content when there is no embed."""
        payload = notifier._create_payload(plain_notification)
        assert payload == {"content": "Treasury got 1.5 ETH"}

    def test_content_is_truncated(self, notifier: DiscordNotifier):
        """Should cut content to Discord's length limit."""
        payload = notifier._create_payload(Notification(subject="", body="x" * 2500))
        assert len(payload["content"]) == DiscordNotifier.MAX_CONTENT_LENGTH

    def test_rate_limit_handling(self, notifier: DiscordNotifier, embed_notification):
        """Should retry once after Discord rate limiting."""
        with patch("requests.post") as mock_post:
            rate_limit_response = Mock()
            rate_limit_response.status_code = 429
            rate_limit_response.ok = False
            rate_limit_response.headers = {"Retry-After": "1"}

            success_response = Mock()
            success_response.status_code = 204
            success_response.ok = True

            mock_post.side_effect = [rate_limit_response, success_response]

            with patch("time.sleep"):  # Don't actually sleep
                result = notifier.send(embed_notification)

        assert mock_post.call_count == 2
        assert result.success is True

    def test_network_error_handling(self, notifier: DiscordNotifier, embed_notification):
        """Should handle network errors gracefully."""
        with patch("requests.post") as mock_post:
            mock_post.side_effect = requests.exceptions.ConnectionError("Network unreachable")

            result = notifier.send(embed_notification)

        assert result.success is False
        assert "Connection error" in result.error


class TestEmailNotifier:
    """Test Email SMTP notifications."""

    @pytest.fixture
    def notifier(self, sample_smtp_config):
        """Create Email notifier."""
        return EmailNotifier(**sample_smtp_config)

    def test_send_email_success(self, notifier: EmailNotifier, embed_notification):
        """Should send email successfully."""
        with patch("smtplib.SMTP") as mock_smtp:
            mock_server = MagicMock()
            mock_smtp.return_value.__enter__.return_value = mock_server

            result = notifier.send(embed_notification)

        assert result.success is True
        assert result.channel == "email"
        mock_smtp.assert_called_once_with("smtp.sendgrid.net", 587, timeout=10)
        mock_server.login.assert_called_once_with("apikey", "test-api-key")
        mock_server.send_message.assert_called_once()

    def test_message_headers_and_parts(self, notifier: EmailNotifier, embed_notification):
        """Should send plain text and HTML alternatives."""
        with patch("smtplib.SMTP") as mock_smtp:
            mock_server = MagicMock()
            mock_smtp.return_value.__enter__.return_value = mock_server

            notifier.send(embed_notification)

        message = mock_server.send_message.call_args[0][0]
        assert message["Subject"] == "Workflow Executed: Treasury"
        assert message["To"] == "recipient@example.com"
        assert "alerts@web3flow.app" in message["From"]
        content_types = [part.get_content_type() for part in message.get_payload()]
        assert content_types == ["text/plain", "text/html"]

    def test_send_email_failure(self, notifier: EmailNotifier, embed_notification):
        """Should handle SMTP failure."""
        with patch("smtplib.SMTP") as mock_smtp:
            mock_smtp.return_value.__enter__.side_effect = Exception("connection refused")

            result = notifier.send(embed_notification)

        assert result.success is False
        assert result.error == "SMTP error: connection refused"

    def test_authentication_failure(self, notifier: EmailNotifier, embed_notification):
        """Should handle authentication failure."""
        import smtplib

        with patch("smtplib.SMTP") as mock_smtp:
            mock_server = MagicMock()
            mock_server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad key")
            mock_smtp.return_value.__enter__.return_value = mock_server

            result = notifier.send(embed_notification)

        assert result.success is False
        assert result.error.startswith("Authentication failed")

    def test_tls_connection(self, notifier: EmailNotifier, embed_notification):
        """Should use TLS for secure connection."""
        with patch("smtplib.SMTP") as mock_smtp:
            mock_server = MagicMock()
            mock_smtp.return_value.__enter__.return_value = mock_server

            notifier.send(embed_notification)

        mock_server.starttls.assert_called_once()

    def test_email_body_html_is_escaped(self, notifier: EmailNotifier):
        """Should escape markup in the HTML body."""
        body = notifier._create_body(Notification(subject="s", body="<b>1 ETH</b>\nsecond line"))

        assert "<html>" in body
        assert "&lt;b&gt;1 ETH&lt;/b&gt;" in body
        assert "<p>second line</p>" in body

    def test_email_body_repeats_embed_fields(self, notifier: EmailNotifier, embed_notification):
        """Should list embed fields without Discord markdown, in the embed colour."""
        body = notifier._create_body(embed_notification)

        assert '<td class="label">Amount</td><td>1.5 ETH</td>' in body
        assert "#FFFF00" in body
        assert "2024-05-01 12:00:00 UTC" in body


class TestWebhookNotifier:
    """Test generic webhook notifications."""

    def test_posts_data_payload(self, embed_notification):
        """Should POST the notification's data as JSON."""
        notifier = WebhookNotifier(url="https://hooks.example.com/in")
        with patch("requests.post") as mock_post:
            result = notifier.send(embed_notification)

        assert result.success is True
        mock_post.assert_called_once_with(
            "https://hooks.example.com/in",
            json={"workflowName": "Treasury", "status": "success"},
            timeout=10,
        )

    def test_default_payload(self, plain_notification):
        """Should fall back to subject and message when there is no data."""
        notifier = WebhookNotifier(url="https://hooks.example.com/in")
        with patch("requests.post") as mock_post:
            notifier.send(plain_notification)

        payload = mock_post.call_args.kwargs["json"]
        assert payload["subject"] == "Hello"
        assert payload["message"] == "Treasury got 1.5 ETH"
        assert "timestamp" in payload

    def test_http_error(self, plain_notification):
        """Should report HTTP errors as failures."""
        notifier = WebhookNotifier(url="https://hooks.example.com/in")
        with patch("requests.post") as mock_post:
            mock_post.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
            result = notifier.send(plain_notification)

        assert result.success is False
        assert "500" in result.error


class TestNotifierFactory:
    """Test notifier creation."""

    def test_create_discord_notifier(self):
        """Should create Discord notifier with the channel timeout."""
        factory = NotifierFactory(NotificationsConfig(channel_timeout_seconds=3))
        notifier = factory.create("discord", "https://discord.com/api/webhooks/123/abc")

        assert isinstance(notifier, DiscordNotifier)
        assert notifier.timeout == 3

    def test_create_email_notifier(self):
        """Should create Email notifier from the SMTP settings."""
        config = NotificationsConfig(
            email=EmailNotificationConfig(smtp_password="key", from_address="a@web3flow.app")
        )
        notifier = NotifierFactory(config).create("email", "to@example.com")

        assert isinstance(notifier, EmailNotifier)
        assert notifier.to_addresses == ["to@example.com"]
        assert notifier.smtp_host == "smtp.sendgrid.net"
        assert notifier.smtp_password == "key"

    def test_create_webhook_notifier(self):
        """Should create a generic webhook notifier."""
        notifier = NotifierFactory().create("webhook", "https://hooks.example.com/in")
        assert isinstance(notifier, WebhookNotifier)

    def test_invalid_notifier_type(self):
        """Should raise error for invalid notifier type."""
        with pytest.raises(ValueError, match="Unknown notifier type"):
            NotifierFactory().create("sms", "+15550100")


class _SlowNotifier(Notifier):
    channel = "webhook"

    def send(self, notification):
        time.sleep(0.5)
        return NotificationResult(success=True, channel=self.channel)


class _ExplodingNotifier(Notifier):
    channel = "email"

    def send(self, notification):
        raise RuntimeError("kaboom")


class _MixedFactory(NotifierFactory):
    """Routes targets to notifiers that misbehave in different ways."""

    def __init__(self):
        super().__init__()
        self.created = []

    def create(self, channel, target):
        self.created.append(target)
        if target == "slow":
            return _SlowNotifier()
        if target == "explode":
            return _ExplodingNotifier()
        return super().create(channel, target)


class TestNotificationDispatcher:
    """Test isolated, time-bounded dispatch."""

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_other_channels(self, plain_notification):
        """Should attempt every delivery even when earlier ones fail."""
        factory = _MixedFactory()
        dispatcher = NotificationDispatcher(factory, timeout=5)
        deliveries = [
            Delivery(channel="email", target="explode", notification=plain_notification),
            Delivery(channel="discord", target="https://discord/ok", notification=plain_notification),
        ]

        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 204
            mock_post.return_value.ok = True
            results = await dispatcher.dispatch(deliveries)

        assert [r.success for r in results] == [False, True]
        assert results[0].error == "kaboom"
        assert factory.created == ["explode", "https://discord/ok"]

    @pytest.mark.asyncio
    async def test_timeout(self, plain_notification):
        """Should give up on a slow channel after the timeout."""
        dispatcher = NotificationDispatcher(_MixedFactory(), timeout=0.05)
        result = await dispatcher.send(
            Delivery(channel="webhook", target="slow", notification=plain_notification)
        )

        assert result.success is False
        assert result.error == "Timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_unknown_channel(self, plain_notification):
        """Should turn an unknown channel into a failed result."""
        dispatcher = NotificationDispatcher(NotifierFactory())
        result = await dispatcher.send(
            Delivery(channel="sms", target="+15550100", notification=plain_notification)
        )

        assert result.success is False
        assert "Unknown notifier type" in result.error

    @pytest.mark.asyncio
    async def test_http_error_is_reported(self, plain_notification):
        """Should report a failing Discord webhook without raising."""
        dispatcher = NotificationDispatcher(NotifierFactory())
        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 500
            mock_post.return_value.ok = False
            mock_post.return_value.text = "Internal Server Error"
            results = await dispatcher.dispatch(
                [Delivery(channel="discord", target="https://discord/x", notification=plain_notification)]
            )

        assert results[0].success is False
        assert results[0].error == "HTTP 500: Internal Server Error"

    def test_default_timeout_from_config(self):
        """Should take the channel timeout from the factory config."""
        factory = NotifierFactory(NotificationsConfig(channel_timeout_seconds=7))
        assert NotificationDispatcher(factory).timeout == 7
