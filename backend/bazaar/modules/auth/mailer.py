"""
Verification Mailer.

Sends one-time codes through the Resend transactional email API.
"""

import asyncio
from typing import Any

import resend
from loguru import logger

from bazaar.core.config import settings


class OtpMailer:
    """
    Email sender for verification codes.

    Usage:
        mailer = OtpMailer()
        await mailer.send_otp("user@example.com", "123456")
    """

    SUBJECT = "Your Verification Code"

    HTML_TEMPLATE = """
<div style="font-family: Arial, sans-serif; padding: 20px;">
  <h2>Email Verification</h2>
  <p>Thank you for signing up! Please use the following code to verify your email:</p>
  <h1 style="letter-spacing: 3px;">{otp}</h1>
  <p>This code will expire in <b>{minutes} minutes</b>.
  If you didn't request this, please ignore this email.</p>
</div>
    """.strip()

    def __init__(self, api_key: str | None = None, sender: str | None = None) -> None:
        self.api_key = api_key or settings.resend_api_key
        self.sender = sender or settings.email_sender
        self.enabled = settings.email_enabled

        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured")

    async def send(self, payload: dict[str, Any]) -> bool:
        """
        Send an email payload.

        Returns:
            True when Resend accepted the message
        """
        if not self.enabled:
            logger.debug("Email delivery disabled")
            return False

        if not self.api_key:
            logger.error("Cannot send: Resend API key not configured")
            return False

        resend.api_key = self.api_key
        try:
            response = await asyncio.to_thread(resend.Emails.send, payload)
        except Exception as e:
            logger.error(f"Resend error sending to {payload.get('to')}: {e}")
            return False

        if not isinstance(response, dict) or not response.get("id"):
            logger.error(f"Unexpected Resend response: {response}")
            return False

        return True

    async def send_otp(self, email: str, otp: str) -> bool:
        """Send a verification code."""
        minutes = settings.otp_expire_minutes
        sent = await self.send(
            {
                "from": self.sender,
                "to": [email],
                "subject": self.SUBJECT,
                "html": self.HTML_TEMPLATE.format(otp=otp, minutes=minutes),
                "text": f"Your OTP is: {otp}. It expires in {minutes} minutes.",
            }
        )
        if sent:
            logger.info(f"Verification code sent to {email}")
        return sent


# Singleton instance
_mailer: OtpMailer | None = None


def get_mailer() -> OtpMailer:
    """Get or create mailer singleton."""
    global _mailer
    if _mailer is None:
        _mailer = OtpMailer()
    return _mailer
