"""
Order API Endpoints.

Checkout (online via Stripe or cash on delivery), payment verification
and the order lifecycle.
"""

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.api.deps import get_current_user, get_order_service, require_seller
from bazaar.core.database import get_db
from bazaar.models.shop import OrderStatus, PaymentMethod
from bazaar.models.user import User
from bazaar.modules.shop.orders import OrderService, serialize_order
from bazaar.modules.users.service import UserService

router = APIRouter()


# ==================== Schemas ====================


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class PlaceOrderRequest(BaseModel):
    """
    Place an order.

    Items default to the current cart. Either an inline address or the id
    of a saved address is required.
    """

    items: list[OrderItemRequest] | None = None
    amount: Decimal | None = Field(None, gt=0)
    address: dict[str, Any] | None = None
    address_id: int | None = None
    payment_method: PaymentMethod = PaymentMethod.ONLINE


class VerifyOrderRequest(BaseModel):
    order_id: int
    success: bool


class UpdateStatusRequest(BaseModel):
    status: OrderStatus


# ==================== Checkout ====================


@router.post("", status_code=201)
async def place_order(
    request: PlaceOrderRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """
    Reserve stock and create an order.

    Online orders return a `session_url` to redirect the customer to;
    cash-on-delivery orders are confirmed immediately.
    """
    address = request.address
    if request.address_id is not None:
        saved = await UserService(db).get_address(user.id, request.address_id)
        address = saved.to_dict()
    if not address:
        raise HTTPException(status_code=400, detail="Shipping address is required")

    placed = await orders.place_order(
        user=user,
        address=address,
        payment_method=request.payment_method,
        items=[item.model_dump() for item in request.items] if request.items else None,
        amount=request.amount,
    )

    response: dict[str, Any] = {
        "message": "Order placed successfully",
        "order": serialize_order(placed.order),
    }
    if placed.checkout_url:
        response["session_url"] = placed.checkout_url
    return response


@router.post("/verify")
async def verify_order(
    request: VerifyOrderRequest,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """Settle an online order after the payment redirect."""
    order = await orders.get_order_for(request.order_id, user)
    if order.user_id != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to verify this order")

    confirmed = await orders.verify_order(request.order_id, request.success)
    if confirmed is None:
        return {"success": False, "message": "Payment cancelled, order discarded"}
    return {
        "success": True,
        "message": "Payment verified",
        "order": serialize_order(confirmed),
    }


# ==================== Orders ====================


@router.get("")
async def get_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """Get the current user's orders, newest first."""
    result = await orders.get_user_orders(user.id, page=page, limit=limit)
    return {
        "orders": [serialize_order(o) for o in result.items],
        "pagination": result.meta("total_orders"),
    }


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    order = await orders.get_order_for(order_id, user)
    seller_view = order.user_id != user.id and user.id in order.seller_ids()
    return {"order": serialize_order(order, seller_id=user.id if seller_view else None)}


@router.put("/{order_id}/status")
async def update_order_status(
    order_id: int,
    request: UpdateStatusRequest,
    seller: User = Depends(require_seller),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """Move an order to its next status."""
    order = await orders.update_status(order_id, seller, request.status)
    return {
        "message": "Order status updated",
        "order": serialize_order(order),
    }


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
) -> dict[str, Any]:
    """Cancel a confirmed order that has not shipped yet."""
    order = await orders.cancel_order(order_id, user)
    return {
        "message": "Order cancelled",
        "order": serialize_order(order),
    }
