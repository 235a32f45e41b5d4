"""
Shared API dependencies: authentication, role checks and services.
"""

from typing import Callable

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.core.database import get_db
from bazaar.core.exceptions import AuthenticationError
from bazaar.core.security import decode_token
from bazaar.models.user import User, UserRole
from bazaar.modules.shop.cart import CartService, get_cart_service
from bazaar.modules.shop.orders import OrderService
from bazaar.modules.shop.payment import PaymentService, get_payment_service

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active user."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Access token required")

    user_id = decode_token(credentials.credentials)
    user = await db.get(User, user_id)
    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")
    return user


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory that only lets the given roles through."""

    async def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return checker


require_seller = require_roles(UserRole.SELLER, UserRole.ADMIN)
require_admin = require_roles(UserRole.ADMIN)


def get_order_service(
    db: AsyncSession = Depends(get_db),
    cart: CartService = Depends(get_cart_service),
    payment: PaymentService = Depends(get_payment_service),
) -> OrderService:
    return OrderService(db, cart=cart, payment=payment)
