"""
Auth Service - Email verification, registration and token management.
"""

import secrets
from dataclasses import dataclass
from datetime import timedelta

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.core.config import settings
from bazaar.core.database import utcnow
from bazaar.core.exceptions import (
    AuthenticationError,
    EmailDeliveryError,
    ValidationError,
)
from bazaar.core.security import (
    REFRESH_TOKEN,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_secret,
    verify_secret,
)
from bazaar.models.auth import EmailOtp, VerifiedEmail
from bazaar.models.user import User, UserRole
from bazaar.modules.auth.mailer import OtpMailer

SELF_SERVICE_ROLES = {UserRole.CUSTOMER, UserRole.SELLER}


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

    def to_dict(self) -> dict[str, str]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
        }


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_otp(length: int | None = None) -> str:
    """Random numeric code."""
    length = length or settings.otp_length
    return "".join(secrets.choice("0123456789") for _ in range(length))


class AuthService:
    """
    Service for signing users up and in.

    Usage:
        auth = AuthService(db_session, mailer)
        await auth.send_otp("user@example.com")
        await auth.verify_otp("user@example.com", "123456")
        user, tokens = await auth.register(...)
    """

    def __init__(self, db: AsyncSession, mailer: OtpMailer | None = None) -> None:
        self.db = db
        self.mailer = mailer

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def get_user(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    # ==================== Email verification ====================

    async def send_otp(self, email: str) -> None:
        """
        Issue a fresh verification code, replacing any earlier one.

        Raises:
            ValidationError: the email already has an account
            EmailDeliveryError: the code could not be sent
        """
        email = normalize_email(email)
        if await self.get_user_by_email(email):
            raise ValidationError("User already exists")

        code = generate_otp()
        await self.db.execute(delete(EmailOtp).where(EmailOtp.email == email))
        self.db.add(
            EmailOtp(
                email=email,
                hashed_code=hash_secret(code),
                expires_at=utcnow() + timedelta(minutes=settings.otp_expire_minutes),
            )
        )
        await self.db.flush()

        if self.mailer is None or not await self.mailer.send_otp(email, code):
            raise EmailDeliveryError("Failed to send OTP")

    async def verify_otp(self, email: str, otp: str) -> None:
        """
        Check a code and mark the email as verified.

        Raises:
            ValidationError: no code, wrong code or expired code
        """
        email = normalize_email(email)
        result = await self.db.execute(select(EmailOtp).where(EmailOtp.email == email))
        record = result.scalar_one_or_none()

        if not record or not verify_secret(otp, record.hashed_code):
            raise ValidationError("Invalid OTP")

        if record.expires_at < utcnow():
            await self.db.delete(record)
            await self.db.flush()
            raise ValidationError("OTP expired")

        await self.db.delete(record)
        existing = await self.db.execute(
            select(VerifiedEmail).where(VerifiedEmail.email == email)
        )
        verified = existing.scalar_one_or_none()
        if verified:
            verified.verified_at = utcnow()
        else:
            self.db.add(VerifiedEmail(email=email))
        await self.db.flush()
        logger.info(f"Email verified: {email}")

    # ==================== Accounts ====================

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        role: UserRole = UserRole.CUSTOMER,
    ) -> tuple[User, TokenPair]:
        """
        Create an account and sign it in.

        Raises:
            ValidationError: missing fields, weak password, existing user,
                disallowed role or unverified email
        """
        email = normalize_email(email)
        if not (email and password and first_name and last_name):
            raise ValidationError("Please provide all required fields")
        if len(password) < settings.password_min_length:
            raise ValidationError(
                f"Password must be at least {settings.password_min_length} characters"
            )
        if role not in SELF_SERVICE_ROLES:
            raise ValidationError("Invalid role")
        if await self.get_user_by_email(email):
            raise ValidationError("User already exists")

        verified = None
        if settings.require_email_verification:
            result = await self.db.execute(
                select(VerifiedEmail).where(VerifiedEmail.email == email)
            )
            verified = result.scalar_one_or_none()
            if not verified:
                raise ValidationError("Please verify your email first")

        user = User(
            email=email,
            hashed_password=hash_secret(password),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone=phone,
            role=role,
            is_active=True,
        )
        self.db.add(user)
        if verified:
            await self.db.delete(verified)
        await self.db.flush()

        tokens = self._issue_tokens(user)
        await self.db.flush()
        logger.info(f"Registered {role.value} {user.id} ({email})")
        return user, tokens

    async def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        """
        Authenticate with email and password.

        Raises:
            AuthenticationError: unknown email, wrong password or inactive user
        """
        user = await self.get_user_by_email(email)
        if not user or not verify_secret(password, user.hashed_password):
            raise AuthenticationError("Invalid credentials")
        if not user.is_active:
            raise AuthenticationError("Account is deactivated")

        tokens = self._issue_tokens(user)
        await self.db.flush()
        logger.info(f"User {user.id} logged in")
        return user, tokens

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange the latest refresh token for a new pair.

        Raises:
            AuthenticationError: invalid, expired or superseded token
        """
        if not refresh_token:
            raise AuthenticationError("Refresh token required")

        user_id = decode_token(refresh_token, REFRESH_TOKEN)
        user = await self.get_user(user_id)
        if not user or not user.is_active or user.refresh_token != refresh_token:
            raise AuthenticationError("Invalid refresh token")

        tokens = self._issue_tokens(user)
        await self.db.flush()
        return tokens

    async def logout(self, user: User) -> None:
        user.refresh_token = None
        await self.db.flush()
        logger.info(f"User {user.id} logged out")

    def _issue_tokens(self, user: User) -> TokenPair:
        tokens = TokenPair(
            access_token=create_access_token(user.id),
            refresh_token=create_refresh_token(user.id),
        )
        user.refresh_token = tokens.refresh_token
        return tokens


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "phone": user.phone,
        "role": user.role.value,
        "is_active": user.is_active,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
