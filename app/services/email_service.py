import asyncio
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Outbound account emails. Every send is best effort and never raises."""

    def __init__(
        self,
        enabled: bool = settings.EMAIL_ENABLED,
        smtp_host: str = settings.SMTP_HOST,
        smtp_port: int = settings.SMTP_PORT,
        smtp_user: Optional[str] = settings.SMTP_USER,
        smtp_password: Optional[str] = settings.SMTP_PASSWORD,
        from_email: Optional[str] = settings.SMTP_FROM_EMAIL,
        from_name: str = settings.SMTP_FROM_NAME,
        frontend_url: str = settings.FRONTEND_URL,
    ):
        self.enabled = enabled
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.frontend_url = frontend_url

    def is_configured(self) -> bool:
        return bool(self.enabled and self.smtp_host and self.smtp_port and self.from_email)

    def _send_smtp_sync(self, msg: MIMEMultipart) -> None:
        """Blocking SMTP delivery, run in a worker thread"""
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
            server.starttls()
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> bool:
        if not self.is_configured():
            logger.info("Email delivery disabled; skipping '%s' for %s", subject, to_email)
            return False

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, "plain"))
            msg.attach(MIMEText(html_content, "html"))

            await asyncio.to_thread(self._send_smtp_sync, msg)

            logger.info("Email sent successfully to %s via SMTP", to_email)
            return True
        except Exception as exc:
            logger.error("SMTP send failed for %s: %s", to_email, exc)
            return False

    @staticmethod
    def _email_layout(body_html: str) -> str:
        app_name = escape(settings.APP_NAME)
        return f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                {body_html}
                <p style="margin-top: 30px; font-size: 12px; color: #666;">&copy; {app_name}</p>
            </div>
        </body>
        </html>
        """

    async def send_verification_email(
        self,
        to_email: str,
        display_name: str,
        verification_token: str,
    ) -> bool:
        """Send the email verification link"""
        link = f"{self.frontend_url.rstrip('/')}/verify-email?token={verification_token}"
        safe_name = escape(display_name)
        safe_link = escape(link, quote=True)
        hours = settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS

        html_content = self._email_layout(f"""
                <h2>Confirm your email</h2>
                <p>Hello {safe_name},</p>
                <p>Please confirm your email address by opening the link below:</p>
                <p style="word-break: break-all;"><a href="{safe_link}">{safe_link}</a></p>
                <p>This link expires in {hours} hours.</p>""")

        text_content = (
            f"Hello {display_name},\n\n"
            f"Please confirm your email address by visiting:\n{link}\n\n"
            f"This link expires in {hours} hours.\n"
        )

        return await self.send_email(
            to_email, f"Verify your {settings.APP_NAME} account", html_content, text_content
        )

    async def send_account_locked_email(
        self,
        to_email: str,
        display_name: str,
        locked_until: datetime,
    ) -> bool:
        """Tell the owner their account was locked after repeated failed logins"""
        until = locked_until.strftime("%Y-%m-%d %H:%M UTC")
        safe_name = escape(display_name)

        html_content = self._email_layout(f"""
                <h2>Account temporarily locked</h2>
                <p>Hello {safe_name},</p>
                <p>Your account was locked after too many failed login attempts.</p>
                <p>You can sign in again after <strong>{until}</strong>.</p>
                <p>If this wasn't you, consider changing your password once the lock expires.</p>""")

        text_content = (
            f"Hello {display_name},\n\n"
            f"Your account was locked after too many failed login attempts.\n"
            f"You can sign in again after {until}.\n"
        )

        return await self.send_email(
            to_email, f"{settings.APP_NAME} account locked", html_content, text_content
        )


# Global email service instance
email_service = EmailService()
