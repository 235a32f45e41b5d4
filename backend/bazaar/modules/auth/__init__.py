"""
Auth Module - Accounts and sessions.

Features:
- Email verification with one-time codes
- Registration and login
- Access/refresh token rotation
"""

from bazaar.modules.auth.mailer import OtpMailer
from bazaar.modules.auth.service import AuthService

__all__ = [
    "AuthService",
    "OtpMailer",
]
