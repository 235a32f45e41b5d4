"""
Seller Service - Dashboard and order views scoped to one seller.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bazaar.models.shop import Order, OrderItem, OrderStatus, Product
from bazaar.modules.shop.service import Page, ShopService

# Orders whose items do not count as earned revenue
UNEARNED_STATUSES = (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED)


class SellerService:
    """Read-side service for a seller's catalog and sales."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_dashboard(self, seller_id: int) -> dict[str, Any]:
        """
        Seller statistics.

        Revenue counts only the seller's own items in orders that are
        confirmed or further along.
        """
        total_products = (
            await self.db.execute(
                select(func.count(Product.id)).where(Product.seller_id == seller_id)
            )
        ).scalar_one()

        status_rows = await self.db.execute(
            select(Order.status, func.count(distinct(Order.id)))
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(OrderItem.seller_id == seller_id)
            .group_by(Order.status)
        )
        order_stats = {status.value: count for status, count in status_rows.all()}

        revenue = (
            await self.db.execute(
                select(func.coalesce(func.sum(OrderItem.total), 0))
                .select_from(OrderItem)
                .join(Order, OrderItem.order_id == Order.id)
                .where(
                    OrderItem.seller_id == seller_id,
                    Order.status.not_in(UNEARNED_STATUSES),
                )
            )
        ).scalar_one()

        return {
            "total_products": total_products,
            "total_orders": sum(order_stats.values()),
            "total_revenue": f"{Decimal(str(revenue)):.2f}",
            "order_stats": order_stats,
        }

    async def get_products(self, seller_id: int, page: int = 1, limit: int = 10) -> Page:
        return await ShopService(self.db).get_products(
            seller_id=seller_id,
            page=page,
            limit=limit,
        )

    async def get_orders(
        self,
        seller_id: int,
        status: OrderStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        """Orders containing at least one of the seller's items, newest first."""
        order_ids = select(OrderItem.order_id).where(OrderItem.seller_id == seller_id)
        conditions = [Order.id.in_(order_ids)]
        if status is not None:
            conditions.append(Order.status == status)

        total = (
            await self.db.execute(select(func.count(Order.id)).where(*conditions))
        ).scalar_one()

        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.user))
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return Page(items=list(result.scalars().all()), page=page, limit=limit, total=total)
