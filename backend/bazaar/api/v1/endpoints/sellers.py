"""
Seller API Endpoints.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.api.deps import require_roles
from bazaar.core.database import get_db
from bazaar.models.shop import OrderStatus
from bazaar.models.user import User, UserRole
from bazaar.modules.shop.orders import serialize_order
from bazaar.modules.shop.seller import SellerService
from bazaar.modules.shop.service import serialize_product

router = APIRouter()

require_seller_only = require_roles(UserRole.SELLER)


@router.get("/dashboard")
async def get_dashboard(
    seller: User = Depends(require_seller_only),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Product, order and revenue totals for the seller."""
    return {"dashboard": await SellerService(db).get_dashboard(seller.id)}


@router.get("/products")
async def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    seller: User = Depends(require_seller_only),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await SellerService(db).get_products(seller.id, page=page, limit=limit)
    return {
        "products": [serialize_product(p) for p in result.items],
        "pagination": result.meta("total_products"),
    }


@router.get("/orders")
async def get_orders(
    status: OrderStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    seller: User = Depends(require_seller_only),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Orders containing the seller's items, showing only those items."""
    result = await SellerService(db).get_orders(
        seller.id, status=status, page=page, limit=limit
    )
    return {
        "orders": [
            {
                **serialize_order(order, seller_id=seller.id),
                "customer": {
                    "name": order.user.full_name,
                    "email": order.user.email,
                },
            }
            for order in result.items
        ],
        "pagination": result.meta("total_orders"),
    }
