"""
User Service - Profile and address book management.
"""

from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.core.config import settings
from bazaar.core.exceptions import NotFoundError, ValidationError
from bazaar.core.security import hash_secret, verify_secret
from bazaar.models.user import User, UserAddress
from bazaar.modules.auth.service import normalize_email

ADDRESS_REQUIRED = ("street", "address", "city", "state", "pincode")
ADDRESS_FIELDS = (*ADDRESS_REQUIRED, "landmark")


class UserService:
    """
    Service for a user's own account data.

    The first address a user saves becomes the default, and there is
    never more than one default per user.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ==================== Profile ====================

    async def update_profile(self, user: User, changes: dict[str, Any]) -> User:
        email = changes.get("email")
        if email:
            email = normalize_email(email)
            if email != user.email:
                taken = await self.db.execute(
                    select(User.id).where(User.email == email, User.id != user.id)
                )
                if taken.scalar_one_or_none() is not None:
                    raise ValidationError("Email already in use")
                user.email = email

        for field in ("first_name", "last_name", "phone"):
            if changes.get(field) is not None:
                setattr(user, field, changes[field])

        await self.db.flush()
        return user

    async def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
    ) -> None:
        if not verify_secret(current_password, user.hashed_password):
            raise ValidationError("Current password is incorrect")
        if len(new_password) < settings.password_min_length:
            raise ValidationError(
                f"Password must be at least {settings.password_min_length} characters"
            )

        user.hashed_password = hash_secret(new_password)
        await self.db.flush()
        logger.info(f"User {user.id} changed password")

    # ==================== Addresses ====================

    async def get_addresses(self, user_id: int) -> list[UserAddress]:
        result = await self.db.execute(
            select(UserAddress)
            .where(UserAddress.user_id == user_id)
            .order_by(UserAddress.id)
        )
        return list(result.scalars().all())

    async def get_address(self, user_id: int, address_id: int) -> UserAddress:
        result = await self.db.execute(
            select(UserAddress).where(
                UserAddress.id == address_id,
                UserAddress.user_id == user_id,
            )
        )
        address = result.scalar_one_or_none()
        if not address:
            raise NotFoundError("Address not found")
        return address

    async def add_address(self, user_id: int, data: dict[str, Any]) -> UserAddress:
        missing = [f for f in ADDRESS_REQUIRED if not data.get(f)]
        if missing:
            raise ValidationError(f"Missing address fields: {', '.join(missing)}")

        existing = await self.get_addresses(user_id)
        is_default = bool(data.get("is_default")) or not existing
        if is_default:
            await self._clear_default(user_id)

        address = UserAddress(
            user_id=user_id,
            is_default=is_default,
            landmark=data.get("landmark") or "",
            **{f: data[f] for f in ADDRESS_REQUIRED},
        )
        self.db.add(address)
        await self.db.flush()
        return address

    async def update_address(
        self,
        user_id: int,
        address_id: int,
        changes: dict[str, Any],
    ) -> UserAddress:
        address = await self.get_address(user_id, address_id)

        for field in ADDRESS_FIELDS:
            value = changes.get(field)
            if value is None:
                continue
            if field in ADDRESS_REQUIRED and not value:
                raise ValidationError(f"{field} cannot be empty")
            setattr(address, field, value)

        if changes.get("is_default") and not address.is_default:
            await self._clear_default(user_id)
            address.is_default = True

        await self.db.flush()
        return address

    async def delete_address(self, user_id: int, address_id: int) -> None:
        address = await self.get_address(user_id, address_id)
        was_default = address.is_default

        await self.db.delete(address)
        await self.db.flush()

        if was_default:
            remaining = await self.get_addresses(user_id)
            if remaining:
                remaining[0].is_default = True
                await self.db.flush()

    async def _clear_default(self, user_id: int) -> None:
        await self.db.execute(
            update(UserAddress)
            .where(UserAddress.user_id == user_id, UserAddress.is_default == True)
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )
