"""
Cart API Endpoints.

The cart stores product ids and quantities only; prices and totals are
read from the catalog on every request.
"""

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.api.deps import get_current_user
from bazaar.core.database import get_db
from bazaar.core.exceptions import NotFoundError
from bazaar.models.user import User
from bazaar.modules.shop.cart import CartService, get_cart_service
from bazaar.modules.shop.service import ShopService

router = APIRouter()


class AddToCartRequest(BaseModel):
    """Add item to cart."""

    product_id: int
    quantity: int = Field(1, ge=1)


class UpdateCartRequest(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


async def render_cart(
    items: list[dict[str, Any]],
    shop: ShopService,
) -> dict[str, Any]:
    """Price cart items against the catalog, dropping products that are gone."""
    lines = await shop.price_items(items)
    total = sum((line.total for line in lines), Decimal("0"))
    return {
        "items": [line.to_dict() for line in lines],
        "total_items": sum(line.quantity for line in lines),
        "total_amount": float(total),
    }


async def _get_product(shop: ShopService, product_id: int):
    product = (await shop.get_products_by_ids([product_id])).get(product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


@router.get("")
async def get_cart(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cart: CartService = Depends(get_cart_service),
) -> dict[str, Any]:
    """Get the current user's cart."""
    items = await cart.get_items(user.id)
    return {"cart": await render_cart(items, ShopService(db))}


@router.post("/add")
async def add_to_cart(
    request: AddToCartRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cart: CartService = Depends(get_cart_service),
) -> dict[str, Any]:
    shop = ShopService(db)
    product = await _get_product(shop, request.product_id)
    items = await cart.add_item(
        user_id=user.id,
        product_id=product.id,
        quantity=request.quantity,
        available=product.available_quantity,
        product_name=product.name,
    )
    return {
        "message": "Item added to cart",
        "cart": await render_cart(items, shop),
    }


@router.put("/update")
async def update_cart(
    request: UpdateCartRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cart: CartService = Depends(get_cart_service),
) -> dict[str, Any]:
    """Set the quantity of an item in the cart."""
    shop = ShopService(db)
    product = await _get_product(shop, request.product_id)
    items = await cart.update_quantity(
        user_id=user.id,
        product_id=product.id,
        quantity=request.quantity,
        available=product.available_quantity,
        product_name=product.name,
    )
    return {
        "message": "Cart updated",
        "cart": await render_cart(items, shop),
    }


@router.delete("/remove/{product_id}")
async def remove_from_cart(
    product_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cart: CartService = Depends(get_cart_service),
) -> dict[str, Any]:
    items = await cart.remove_item(user.id, product_id)
    return {
        "message": "Item removed from cart",
        "cart": await render_cart(items, ShopService(db)),
    }


@router.delete("/clear")
async def clear_cart(
    user: User = Depends(get_current_user),
    cart: CartService = Depends(get_cart_service),
) -> dict[str, str]:
    """Clear entire cart."""
    await cart.clear(user.id)
    return {"message": "Cart cleared"}
