"""
User API Endpoints.

Profile, password and address book.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.api.deps import get_current_user
from bazaar.core.database import get_db
from bazaar.models.user import User
from bazaar.modules.auth.service import serialize_user
from bazaar.modules.users.service import UserService

router = APIRouter()


# ==================== Schemas ====================


class UpdateProfileRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class AddressRequest(BaseModel):
    """New address."""

    street: str
    landmark: str | None = None
    address: str
    city: str
    state: str
    pincode: str
    is_default: bool = False


class UpdateAddressRequest(BaseModel):
    street: str | None = None
    landmark: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    pincode: str | None = None
    is_default: bool | None = None


# ==================== Profile ====================


@router.get("/profile")
async def get_profile(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"user": serialize_user(user)}


@router.put("/profile")
async def update_profile(
    request: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await UserService(db).update_profile(user, request.model_dump(exclude_unset=True))
    return {"message": "Profile updated successfully", "user": serialize_user(user)}


@router.put("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    await UserService(db).change_password(
        user, request.current_password, request.new_password
    )
    return {"message": "Password changed successfully"}


# ==================== Addresses ====================


@router.get("/addresses")
async def get_addresses(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    addresses = await UserService(db).get_addresses(user.id)
    return {"addresses": [a.to_dict() for a in addresses]}


@router.post("/addresses", status_code=201)
async def add_address(
    request: AddressRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    address = await UserService(db).add_address(user.id, request.model_dump())
    return {"message": "Address added successfully", "address": address.to_dict()}


@router.get("/addresses/{address_id}")
async def get_address(
    address_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    address = await UserService(db).get_address(user.id, address_id)
    return {"address": address.to_dict()}


@router.put("/addresses/{address_id}")
async def update_address(
    address_id: int,
    request: UpdateAddressRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    address = await UserService(db).update_address(
        user.id, address_id, request.model_dump(exclude_unset=True)
    )
    return {"message": "Address updated successfully", "address": address.to_dict()}


@router.delete("/addresses/{address_id}")
async def delete_address(
    address_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    await UserService(db).delete_address(user.id, address_id)
    return {"message": "Address deleted successfully"}
