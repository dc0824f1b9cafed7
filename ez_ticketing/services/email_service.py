"""
Email transport used by broadcasts and waitlist notices.
"""

import asyncio
import html
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from ..config import get_settings
from ..utils.exceptions import EmailServiceError

logger = logging.getLogger(__name__)

# Header colour per message type
_ACCENT_COLOURS = {
    "offer": "#E91E63",
    "announcement": "#3F51B5",
    "update": "#009688",
    "custom": "#FF9800",
}


class EmailService:
    """SMTP email sender."""

    def __init__(self):
        self.settings = get_settings()

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.smtp_server and self.settings.smtp_username)

    async def send_notification_email(
        self,
        to: str,
        subject: str,
        title: str,
        html_content: str,
        message_type: str = "custom",
        recipient_name: Optional[str] = None
    ) -> bool:
        """
        Send one notification email.

        Args:
            to: Recipient email address
            subject: Email subject
            title: Heading shown in the email body
            html_content: Body HTML, inserted as given
            message_type: offer, announcement, update or custom
            recipient_name: Name used in the greeting

        Returns:
            bool: True if the message was handed to the SMTP server
        """
        document = self._render_notification_template(title, html_content, message_type, recipient_name)
        try:
            await self.send(to, subject, document, title)
            return True
        except EmailServiceError as e:
            logger.error(f"Failed to send email to {to}: {e.message}")
            return False

    async def send_waitlist_confirmation_email(
        self,
        to: str,
        recipient_name: str,
        event_title: str,
        ticket_type: str,
        quantity: int,
        position: Optional[int]
    ) -> bool:
        """Tell a user they joined the waitlist and where they stand."""
        position_line = f"<p>Your current position: <strong>#{position}</strong></p>" if position else ""
        body = f"""
            <p>You have been added to the waitlist for <strong>{html.escape(event_title)}</strong>.</p>
            <p>Ticket type: {html.escape(ticket_type)}<br>Quantity: {quantity}</p>
            {position_line}
            <p>We will email you as soon as tickets become available.</p>
        """
        return await self.send_notification_email(
            to=to,
            subject=f"You're on the Waitlist! - {event_title}",
            title="You're on the Waitlist!",
            html_content=body,
            message_type="update",
            recipient_name=recipient_name
        )

    async def send_waitlist_availability_email(
        self,
        to: str,
        recipient_name: str,
        event_title: str,
        ticket_type: str,
        quantity: int,
        expires_at: datetime,
        booking_url: str
    ) -> bool:
        """Tell a promoted user that tickets are available until ``expires_at``."""
        body = f"""
            <p>Good news! {quantity} {html.escape(ticket_type)} ticket(s) for
            <strong>{html.escape(event_title)}</strong> are now available for you.</p>
            <p>This offer expires on <strong>{expires_at:%B %d, %Y at %H:%M} UTC</strong>.</p>
            <p><a href="{html.escape(booking_url)}">Book your tickets now</a></p>
        """
        return await self.send_notification_email(
            to=to,
            subject=f"Tickets Available - {event_title}",
            title="Tickets Available!",
            html_content=body,
            message_type="offer",
            recipient_name=recipient_name
        )

    async def send(self, to: str, subject: str, html_content: str, text_content: str) -> None:
        """
        Deliver a message over SMTP in a worker thread.

        Raises:
            EmailServiceError: If SMTP isn't configured or delivery fails
        """
        if not self.is_configured:
            raise EmailServiceError("SMTP is not configured")

        await asyncio.to_thread(self._deliver, to, subject, html_content, text_content)
        logger.info(f"Email sent successfully to {to}")

    # Private helper methods

    def _deliver(self, to: str, subject: str, html_content: str, text_content: str) -> None:
        """Blocking SMTP send."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.from_email or self.settings.smtp_username
        msg["To"] = to

        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.settings.smtp_server, self.settings.smtp_port, timeout=30) as server:
                if self.settings.smtp_use_tls:
                    server.starttls()
                server.login(self.settings.smtp_username, self.settings.smtp_password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailServiceError(str(e)) from e

    def _render_notification_template(
        self,
        title: str,
        html_content: str,
        message_type: str,
        recipient_name: Optional[str]
    ) -> str:
        """Wrap broadcast content in the standard email layout."""
        accent = _ACCENT_COLOURS.get(message_type, _ACCENT_COLOURS["custom"])
        greeting = f"<p>Hi {html.escape(recipient_name)},</p>" if recipient_name else ""
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <title>{html.escape(title)}</title>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background-color: {accent}; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 20px; background-color: #f9f9f9; }}
                .footer {{ text-align: center; padding: 20px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>{html.escape(title)}</h1>
                </div>
                <div class="content">
                    {greeting}
                    {html_content}
                </div>
                <div class="footer">
                    <p>You are receiving this email because you have an EZ Ticketing account.</p>
                </div>
            </div>
        </body>
        </html>
        """
