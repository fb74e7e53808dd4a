"""
Email Service

Sends OTP codes, welcome messages and security alerts over SMTP.

Every send returns ``True``/``False`` and never raises; callers decide whether
a failed delivery matters.
"""

import asyncio
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Protocol

from app.core.config import Settings, settings as default_settings
from app.models.enums import OTPPurpose


logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Outbound notification channel used by the identity flows."""

    async def send_otp(
        self, email: str, code: str, purpose: OTPPurpose, expires_at: datetime
    ) -> bool: ...

    async def send_welcome(self, email: str, data: Dict[str, Any]) -> bool: ...

    async def send_security_alert(self, email: str, data: Dict[str, Any]) -> bool: ...


_OTP_SUBJECTS = {
    OTPPurpose.REGISTRATION: "Verify your Qub Drive account",
    OTPPurpose.EMAIL_VERIFICATION: "Verify your Qub Drive email",
    OTPPurpose.PASSWORD_RESET: "Reset your Qub Drive password",
}

_OTP_INTROS = {
    OTPPurpose.REGISTRATION: "Welcome to Qub Drive! Use the code below to verify your email address.",
    OTPPurpose.EMAIL_VERIFICATION: "Welcome to Qub Drive! Use the code below to verify your email address.",
    OTPPurpose.PASSWORD_RESET: "We received a request to reset your Qub Drive password. Use the code below to continue.",
}

_STYLE = """
            body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 0; background-color: #f5f5f5; }
            .container { max-width: 600px; margin: 40px auto; background: white; border-radius: 12px; box-shadow: 0 4px 20px rgba(0,0,0,0.1); overflow: hidden; }
            .header { background: linear-gradient(135deg, #2563eb 0%, #1d4ed8 100%); padding: 40px; text-align: center; }
            .header h1 { color: white; margin: 0; font-size: 28px; }
            .content { padding: 40px; }
            .otp-box { background: #eff6ff; border: 2px dashed #bfdbfe; border-radius: 12px; padding: 30px; text-align: center; margin: 30px 0; }
            .otp-code { font-size: 36px; font-weight: bold; letter-spacing: 8px; color: #1d4ed8; font-family: monospace; }
            .warning { background: #fef3c7; border-left: 4px solid #f59e0b; padding: 12px 16px; margin: 20px 0; border-radius: 4px; }
            .footer { background: #f9fafb; padding: 20px; text-align: center; color: #6b7280; font-size: 14px; }
            p { color: #374151; line-height: 1.6; }
"""


def _wrap_html(title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <style>{_STYLE}</style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>{title}</h1>
            </div>
            <div class="content">
                {body}
            </div>
            <div class="footer">
                <p>&copy; Qub Drive. All rights reserved.</p>
            </div>
        </div>
    </body>
    </html>
    """


def _minutes_until(expires_at: datetime, now: datetime) -> int:
    return max(1, round((expires_at - now).total_seconds() / 60))


def get_otp_email_html(code: str, purpose: OTPPurpose, minutes: int) -> str:
    """Generate HTML content for an OTP email."""
    body = f"""
                <p>{_OTP_INTROS[purpose]}</p>
                <div class="otp-box">
                    <div class="otp-code">{code}</div>
                </div>
                <p>This code will expire in <strong>{minutes} minutes</strong>.</p>
                <div class="warning">
                    If you didn't request this code, you can safely ignore this email.
                </div>
    """
    return _wrap_html(_OTP_SUBJECTS[purpose], body)


def get_otp_email_text(code: str, purpose: OTPPurpose, minutes: int) -> str:
    """Generate plain text content for an OTP email."""
    return f"""
{_OTP_INTROS[purpose]}

Your code: {code}

This code will expire in {minutes} minutes.

If you didn't request this code, you can safely ignore this email.
    """


def get_welcome_email_text(first_name: str, dashboard_url: str) -> str:
    return f"""
Hi {first_name},

Your Qub Drive account is ready. Start uploading and sharing files at:

{dashboard_url}
    """


def get_security_alert_text(data: Dict[str, Any]) -> str:
    details = "\n".join(f"  {key}: {value}" for key, value in data.items())
    return f"""
A security-relevant change was made to your Qub Drive account:

{details}

If this wasn't you, reset your password immediately and contact support.
    """


class EmailNotifier:
    """
    SMTP notifier.

    Outside production, with no SMTP user configured, messages are logged
    instead of sent (development mode).
    """

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings

    @property
    def dev_mode(self) -> bool:
        return not self.settings.is_production and not self.settings.SMTP_USER

    def _deliver(self, to_email: str, subject: str, text: str, html: Optional[str]) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.settings.EMAIL_FROM_NAME} <{self.settings.EMAIL_FROM_ADDRESS}>"
        msg["To"] = to_email

        msg.attach(MIMEText(text, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT) as server:
            server.starttls()
            server.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD)
            server.sendmail(
                self.settings.EMAIL_FROM_ADDRESS,
                to_email,
                msg.as_string(),
            )

    async def _send(
        self, to_email: str, subject: str, text: str, html: Optional[str] = None
    ) -> bool:
        try:
            await asyncio.to_thread(self._deliver, to_email, subject, text, html)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send '{subject}' to {to_email}: {e}")
            return False
        logger.info(f"Email '{subject}' sent to {to_email}")
        return True

    async def send_otp(
        self, email: str, code: str, purpose: OTPPurpose, expires_at: datetime
    ) -> bool:
        """
        Send a one-time code.

        Args:
            email: Recipient email address.
            code: Plain numeric code.
            purpose: Selects subject and wording.
            expires_at: Shown to the user as minutes remaining.

        Returns:
            bool: True if the email was sent (or logged in development mode).
        """
        minutes = _minutes_until(expires_at, datetime.now(expires_at.tzinfo))

        if self.dev_mode:
            logger.info(f"[DEV MODE] {purpose.value} OTP for {email}: {code}")
            print(f"\n{'='*50}")
            print(f"DEVELOPMENT MODE - {purpose.value} OTP")
            print(f"To: {email}")
            print(f"OTP Code: {code}")
            print(f"{'='*50}\n")
            return True

        return await self._send(
            email,
            f"{_OTP_SUBJECTS[purpose]} - {code}",
            get_otp_email_text(code, purpose, minutes),
            get_otp_email_html(code, purpose, minutes),
        )

    async def send_welcome(self, email: str, data: Dict[str, Any]) -> bool:
        if self.dev_mode:
            logger.info(f"[DEV MODE] Welcome email for {email}")
            return True

        first_name = data.get("first_name") or "there"
        dashboard_url = data.get("dashboard_url") or self.settings.DASHBOARD_URL
        return await self._send(
            email,
            "Welcome to Qub Drive",
            get_welcome_email_text(first_name, dashboard_url),
        )

    async def send_security_alert(self, email: str, data: Dict[str, Any]) -> bool:
        if self.dev_mode:
            logger.info(f"[DEV MODE] Security alert for {email}: {data}")
            return True

        return await self._send(
            email,
            "Qub Drive security alert",
            get_security_alert_text(data),
        )
