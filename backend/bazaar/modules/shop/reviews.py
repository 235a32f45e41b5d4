"""
Review Service - Product reviews from customers who received the product.
"""

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bazaar.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from bazaar.models.shop import Order, OrderItem, OrderStatus, Product, ProductReview


class ReviewService:
    """
    Service for product reviews.

    Usage:
        reviews = ReviewService(db_session)
        review = await reviews.add_review(user_id, product_id, rating=5)
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_product_reviews(self, product_id: int) -> list[ProductReview]:
        """Reviews of a product, newest first."""
        if not await self.db.get(Product, product_id):
            raise NotFoundError("Product not found")

        result = await self.db.execute(
            select(ProductReview)
            .options(selectinload(ProductReview.user))
            .where(ProductReview.product_id == product_id)
            .order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
        )
        return list(result.scalars().all())

    async def has_received(self, user_id: int, product_id: int) -> bool:
        """Whether the user has a delivered order containing the product."""
        result = await self.db.execute(
            select(Order.id)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(
                Order.user_id == user_id,
                Order.status == OrderStatus.DELIVERED,
                OrderItem.product_id == product_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def add_review(
        self,
        user_id: int,
        product_id: int,
        rating: int,
        comment: str | None = None,
    ) -> ProductReview:
        """
        Add a review and refresh the product's rating aggregate.

        Raises:
            NotFoundError: unknown product
            PermissionDeniedError: product not delivered to this user
            ValidationError: bad rating or duplicate review
        """
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found")

        if not await self.has_received(user_id, product_id):
            raise PermissionDeniedError("You can review only delivered products")

        existing = await self.db.execute(
            select(ProductReview.id).where(
                ProductReview.user_id == user_id,
                ProductReview.product_id == product_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError("You have already reviewed this product")

        review = ProductReview(
            user_id=user_id,
            product_id=product_id,
            rating=rating,
            comment=comment,
        )
        self.db.add(review)
        await self.db.flush()

        count, average = (
            await self.db.execute(
                select(func.count(ProductReview.id), func.avg(ProductReview.rating)).where(
                    ProductReview.product_id == product_id
                )
            )
        ).one()
        product.review_count = count
        product.average_rating = float(average or 0)
        await self.db.flush()

        logger.info(f"User {user_id} reviewed product {product_id} ({rating}/5)")
        return review


def serialize_review(review: ProductReview) -> dict:
    return {
        "id": review.id,
        "product_id": review.product_id,
        "user_id": review.user_id,
        "user": review.user.full_name if "user" in review.__dict__ and review.user else None,
        "rating": review.rating,
        "comment": review.comment,
        "created_at": review.created_at.isoformat(),
    }
