"""
Cart Service - Shopping cart management with Redis.
"""

import json
from typing import Any

import redis.asyncio as redis
from loguru import logger

from bazaar.core.config import settings
from bazaar.core.exceptions import InsufficientStockError, NotFoundError, ValidationError


class CartService:
    """
    Shopping cart service using Redis for storage.

    A cart is a list of {product_id, quantity} per user, stored with a TTL
    for automatic expiration. Prices are never stored; totals come from
    the catalog when the cart is read.

    Usage:
        cart = CartService()
        await cart.add_item(user_id, product_id=7, quantity=2, available=10)
        items = await cart.get_items(user_id)
    """

    def __init__(self, client: redis.Redis | None = None) -> None:
        """Initialize with an optional ready-made Redis client."""
        self._redis: redis.Redis | None = client

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()

    def _cart_key(self, user_id: int) -> str:
        """Generate Redis key for user's cart."""
        return f"cart:{user_id}"

    async def get_items(self, user_id: int) -> list[dict[str, Any]]:
        """
        Get all items in user's cart.

        Returns:
            List of {product_id, quantity}
        """
        if not self._redis:
            await self.connect()

        cart_data = await self._redis.get(self._cart_key(user_id))
        if not cart_data:
            return []

        try:
            return json.loads(cart_data)
        except json.JSONDecodeError:
            logger.warning(f"Invalid cart data for user {user_id}")
            return []

    async def _save_items(self, user_id: int, items: list[dict[str, Any]]) -> None:
        """Save cart items to Redis."""
        key = self._cart_key(user_id)
        if not items:
            await self._redis.delete(key)
            return
        await self._redis.setex(key, settings.cart_ttl_seconds, json.dumps(items))

    async def add_item(
        self,
        user_id: int,
        product_id: int,
        quantity: int,
        available: int,
        product_name: str = "",
    ) -> list[dict[str, Any]]:
        """
        Add item to cart or increase its quantity.

        Args:
            user_id: Cart owner
            product_id: Product to add
            quantity: Units to add
            available: Units the catalog can still sell
            product_name: Used in the error message

        Returns:
            Updated cart items
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        items = await self.get_items(user_id)

        for item in items:
            if item["product_id"] == product_id:
                new_quantity = item["quantity"] + quantity
                if new_quantity > available:
                    raise InsufficientStockError(product_name or str(product_id), available)
                item["quantity"] = new_quantity
                break
        else:
            if quantity > available:
                raise InsufficientStockError(product_name or str(product_id), available)
            items.append({"product_id": product_id, "quantity": quantity})

        await self._save_items(user_id, items)
        return items

    async def update_quantity(
        self,
        user_id: int,
        product_id: int,
        quantity: int,
        available: int,
        product_name: str = "",
    ) -> list[dict[str, Any]]:
        """Set the quantity of an item already in the cart."""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if quantity > available:
            raise InsufficientStockError(product_name or str(product_id), available)

        items = await self.get_items(user_id)
        for item in items:
            if item["product_id"] == product_id:
                item["quantity"] = quantity
                break
        else:
            raise NotFoundError("Item not found in cart")

        await self._save_items(user_id, items)
        return items

    async def remove_item(self, user_id: int, product_id: int) -> list[dict[str, Any]]:
        """Remove item from cart."""
        items = [
            item for item in await self.get_items(user_id)
            if item["product_id"] != product_id
        ]
        await self._save_items(user_id, items)
        return items

    async def clear(self, user_id: int) -> None:
        """Clear all items from cart."""
        if not self._redis:
            await self.connect()
        await self._redis.delete(self._cart_key(user_id))
        logger.debug(f"Cleared cart for user {user_id}")


# Singleton instance
_cart_service: CartService | None = None


async def get_cart_service() -> CartService:
    """Get or create cart service singleton."""
    global _cart_service
    if _cart_service is None:
        _cart_service = CartService()
        await _cart_service.connect()
    return _cart_service


async def close_cart_service() -> None:
    global _cart_service
    if _cart_service is not None:
        await _cart_service.disconnect()
        _cart_service = None
