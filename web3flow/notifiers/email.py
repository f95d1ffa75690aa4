"""
Email notifier over SMTP (SendGrid by default).
"""

import html
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from .base import Notification, Notifier, NotificationResult

DEFAULT_ACCENT = 0x3498DB


class EmailNotifier(Notifier):
    """Sends a plain text and HTML mail per notification."""

    channel = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_address: str,
        to_addresses: list[str],
        from_name: str = "Web3Flow",
        timeout: float = 10,
    ):
        """
        Args:
            smtp_host: SMTP relay, e.g. smtp.sendgrid.net
            smtp_port: STARTTLS port
            smtp_user: Login name ("apikey" for SendGrid)
            smtp_password: Password or API key
            from_address: Verified sender address
            to_addresses: Recipients
            from_name: Sender display name
            timeout: Socket timeout in seconds
        """
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address
        self.to_addresses = to_addresses
        self.from_name = from_name
        self.timeout = timeout

    def send(self, notification: Notification) -> NotificationResult:
        recipients = ", ".join(self.to_addresses)
        try:
            mail = self._create_message(notification)
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
                smtp.starttls()
                if self.smtp_user:
                    smtp.login(self.smtp_user, self.smtp_password)
                smtp.send_message(mail)
        except smtplib.SMTPAuthenticationError as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"Authentication failed: {e}",
                target=recipients,
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"SMTP error: {e}",
                target=recipients,
            )
        return NotificationResult(success=True, channel=self.channel, target=recipients)

    def _create_message(self, notification: Notification) -> MIMEMultipart:
        mail = MIMEMultipart("alternative")
        mail["Subject"] = notification.subject
        mail["From"] = formataddr((self.from_name, self.from_address))
        mail["To"] = ", ".join(self.to_addresses)
        mail.attach(MIMEText(notification.body, "plain"))
        mail.attach(MIMEText(self._create_body(notification), "html"))
        return mail

    def _create_body(self, notification: Notification) -> str:
        """
        Render the HTML part.

        Body lines become paragraphs. When the notification carries a
        Discord embed, its fields are repeated as a details table and its
        colour is used as the accent.
        """
        embed = notification.embed or {}
        accent = f"#{embed.get('color', DEFAULT_ACCENT):06X}"
        paragraphs = "".join(
            f"<p>{html.escape(line)}</p>"
            for line in notification.body.splitlines()
            if line.strip()
        )
        rows = "".join(
            "<tr>"
            f'<td class="label">{html.escape(f["name"])}</td>'
            f"<td>{html.escape(_strip_markdown(f['value']))}</td>"
            "</tr>"
            for f in embed.get("fields", [])
        )
        details = f'<table class="details">{rows}</table>' if rows else ""
        sent_at = notification.created_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()

        return f"""<!DOCTYPE html>
<html>
<body style="font-family: Helvetica, Arial, sans-serif; padding: 16px;">
  <div style="border-top: 4px solid {accent}; padding: 12px 16px; background: #fafafa;">
    <h2 style="margin-top: 0;">{html.escape(notification.subject)}</h2>
    {paragraphs}
    {details}
    <p style="color: #999; font-size: 11px;">Web3Flow &middot; {sent_at}</p>
  </div>
</body>
</html>
"""


def _strip_markdown(text: str) -> str:
    return text.replace("**", "").replace("`", "")
