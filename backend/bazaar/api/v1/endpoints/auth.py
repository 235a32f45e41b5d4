"""
Auth API Endpoints.

Email verification, registration, login and token refresh.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.api.deps import get_current_user
from bazaar.core.database import get_db
from bazaar.models.user import User, UserRole
from bazaar.modules.auth.mailer import OtpMailer, get_mailer
from bazaar.modules.auth.service import AuthService, serialize_user

router = APIRouter()


# ==================== Schemas ====================


class SendOtpRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str


class RegisterRequest(BaseModel):
    """Create an account."""

    first_name: str
    last_name: str
    email: EmailStr
    password: str
    phone: str | None = None
    role: UserRole = UserRole.CUSTOMER


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


# ==================== Email verification ====================


@router.post("/send-otp")
async def send_otp(
    request: SendOtpRequest,
    db: AsyncSession = Depends(get_db),
    mailer: OtpMailer = Depends(get_mailer),
) -> dict[str, str]:
    """Email a verification code."""
    await AuthService(db, mailer).send_otp(request.email)
    return {"message": "OTP sent to email"}


@router.post("/verify-otp")
async def verify_otp(
    request: VerifyOtpRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    """Check a verification code."""
    await AuthService(db).verify_otp(request.email, request.otp)
    return {"message": "Email verified successfully"}


# ==================== Sessions ====================


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Register a customer or seller account."""
    user, tokens = await AuthService(db).register(
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone,
        role=request.role,
    )
    return {
        "message": "User registered successfully",
        "user": serialize_user(user),
        **tokens.to_dict(),
    }


@router.post("/login")
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user, tokens = await AuthService(db).login(request.email, request.password)
    return {
        "message": "Login successful",
        "user": serialize_user(user),
        **tokens.to_dict(),
    }


@router.post("/refresh")
async def refresh_token(
    request: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    """Rotate the access and refresh tokens."""
    tokens = await AuthService(db).refresh(request.refresh_token)
    return tokens.to_dict()


@router.post("/logout")
async def logout(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    await AuthService(db).logout(user)
    return {"message": "Logged out successfully"}


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> dict[str, Any]:
    """Current user profile."""
    return {"user": serialize_user(user)}
