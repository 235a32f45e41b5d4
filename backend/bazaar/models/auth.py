"""
Email verification records used before registration.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from bazaar.core.database import Base, utcnow


class EmailOtp(Base):
    """Pending one-time code for an email address."""

    __tablename__ = "email_otps"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_code: Mapped[str] = mapped_column(String(255))
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class VerifiedEmail(Base):
    """Email address that passed OTP verification."""

    __tablename__ = "verified_emails"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    verified_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
