"""
Shop Service - Catalog and inventory management.
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import uuid4

from loguru import logger
from slugify import slugify
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bazaar.core.exceptions import (
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from bazaar.models.shop import Category, Product, ProductReview

SORT_FIELDS = {
    "created_at": Product.created_at,
    "price": Product.price,
    "name": Product.name,
    "average_rating": Product.average_rating,
}


@dataclass
class CartLine:
    """One line of a cart priced against the live catalog."""

    product_id: int
    name: str
    price: Decimal
    quantity: int
    seller_id: int
    available: int
    image_url: str | None = None

    @property
    def total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price": float(self.price),
            "quantity": self.quantity,
            "total": float(self.total),
            "seller_id": self.seller_id,
            "available": self.available,
            "image_url": self.image_url,
        }


@dataclass
class Page:
    """Slice of a result set with the numbers needed to paginate it."""

    items: list[Any]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def meta(self, total_key: str = "total") -> dict[str, Any]:
        return {
            "current_page": self.page,
            "total_pages": self.total_pages,
            total_key: self.total,
            "has_next": self.page * self.limit < self.total,
            "has_prev": self.page > 1,
        }


class ShopService:
    """
    Service for managing categories, products and stock levels.

    Usage:
        shop = ShopService(db_session)
        page = await shop.get_products(category_id=3, search="lamp")
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize shop service with database session."""
        self.db = db

    # ==================== Categories ====================

    async def get_categories(self, include_inactive: bool = False) -> list[Category]:
        """Get all categories."""
        query = select(Category).order_by(Category.name)
        if not include_inactive:
            query = query.where(Category.is_active == True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_category(self, category_id: int) -> Category | None:
        return await self.db.get(Category, category_id)

    async def create_category(
        self,
        name: str,
        description: str | None = None,
    ) -> Category:
        """Create new category."""
        slug = slugify(name)
        existing = await self.db.execute(select(Category).where(Category.slug == slug))
        if existing.scalar_one_or_none():
            raise ValidationError("Category already exists")

        category = Category(name=name, slug=slug, description=description)
        self.db.add(category)
        await self.db.flush()
        return category

    # ==================== Products ====================

    async def get_products(
        self,
        category_id: int | None = None,
        seller_id: int | None = None,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        search: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        """
        Get products with filters.

        Args:
            category_id: Filter by category
            seller_id: Filter by seller
            min_price: Lowest price, inclusive
            max_price: Highest price, inclusive
            search: Search in name/description
            sort_by: One of SORT_FIELDS
            sort_order: "asc" or "desc"
            page: 1-based page number
            limit: Page size

        Returns:
            Page of products
        """
        conditions = []
        if category_id:
            conditions.append(Product.category_id == category_id)
        if seller_id:
            conditions.append(Product.seller_id == seller_id)
        if min_price is not None:
            conditions.append(Product.price >= min_price)
        if max_price is not None:
            conditions.append(Product.price <= max_price)
        if search:
            search_pattern = f"%{search}%"
            conditions.append(
                Product.name.ilike(search_pattern)
                | Product.description.ilike(search_pattern)
            )

        sort_column = SORT_FIELDS.get(sort_by)
        if sort_column is None:
            raise ValidationError(f"Cannot sort by {sort_by}")
        ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        count_query = select(func.count(Product.id)).where(*conditions)
        total = (await self.db.execute(count_query)).scalar_one()

        query = (
            select(Product)
            .options(selectinload(Product.category), selectinload(Product.seller))
            .where(*conditions)
            .order_by(ordering, Product.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        result = await self.db.execute(query)
        return Page(items=list(result.scalars().all()), page=page, limit=limit, total=total)

    async def get_product(self, product_id: int) -> Product | None:
        """Get product with category, seller and reviews."""
        query = (
            select(Product)
            .options(
                selectinload(Product.category),
                selectinload(Product.seller),
                selectinload(Product.reviews).selectinload(ProductReview.user),
            )
            .where(Product.id == product_id)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_products_by_ids(self, product_ids: list[int]) -> dict[int, Product]:
        if not product_ids:
            return {}
        result = await self.db.execute(select(Product).where(Product.id.in_(product_ids)))
        return {p.id: p for p in result.scalars().all()}

    async def create_product(
        self,
        seller_id: int,
        name: str,
        description: str,
        price: Decimal,
        category_id: int,
        stock_quantity: int = 0,
    ) -> Product:
        """Create new product owned by a seller."""
        if not await self.get_category(category_id):
            raise ValidationError("Invalid category")

        product = Product(
            name=name,
            slug=f"{slugify(name)}-{uuid4().hex[:6]}",
            description=description,
            price=price,
            category_id=category_id,
            seller_id=seller_id,
            stock_quantity=stock_quantity,
            reserved_quantity=0,
            image_urls=[],
        )
        self.db.add(product)
        await self.db.flush()
        logger.info(f"Seller {seller_id} created product {product.id}")
        return product

    async def get_owned_product(self, product_id: int, seller_id: int) -> Product:
        """Load a product and make sure the seller owns it."""
        product = await self.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")
        if product.seller_id != seller_id:
            raise PermissionDeniedError("Not authorized to modify this product")
        return product

    async def update_product(
        self,
        product_id: int,
        seller_id: int,
        changes: dict[str, Any],
    ) -> Product:
        """Apply a partial update to a seller's product."""
        product = await self.get_owned_product(product_id, seller_id)

        category_id = changes.get("category_id")
        if category_id is not None and not await self.get_category(category_id):
            raise ValidationError("Invalid category")

        stock = changes.get("stock_quantity")
        if stock is not None and stock < product.reserved_quantity:
            raise ValidationError(
                f"Stock cannot drop below {product.reserved_quantity} reserved units"
            )

        for field in ("name", "description", "price", "category_id", "stock_quantity"):
            if changes.get(field) is not None:
                setattr(product, field, changes[field])

        await self.db.flush()
        await self.db.refresh(product, attribute_names=["category", "updated_at"])
        return product

    async def add_images(self, product: Product, urls: list[str]) -> Product:
        product.image_urls = [*(product.image_urls or []), *urls]
        await self.db.flush()
        return product

    async def delete_product(self, product_id: int, seller_id: int) -> None:
        product = await self.get_owned_product(product_id, seller_id)
        await self.db.delete(product)
        await self.db.flush()
        logger.info(f"Seller {seller_id} deleted product {product_id}")

    # ==================== Stock ====================

    async def reserve_stock(self, product_id: int, quantity: int) -> bool:
        """
        Hold units for an order without removing them from stock.

        The guard in the WHERE clause keeps stock - reserved >= 0 even
        when several checkouts race for the same product.
        """
        result = await self.db.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock_quantity - Product.reserved_quantity >= quantity,
            )
            .values(reserved_quantity=Product.reserved_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_stock(self, product_id: int, quantity: int) -> bool:
        """Drop a reservation, leaving stock_quantity untouched."""
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.reserved_quantity >= quantity)
            .values(reserved_quantity=Product.reserved_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def commit_stock(self, product_id: int, quantity: int) -> bool:
        """Turn reserved units into sold units."""
        result = await self.db.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.reserved_quantity >= quantity,
                Product.stock_quantity >= quantity,
            )
            .values(
                stock_quantity=Product.stock_quantity - quantity,
                reserved_quantity=Product.reserved_quantity - quantity,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def restore_stock(self, product_id: int, quantity: int) -> bool:
        """Put sold units back, e.g. when an order is cancelled."""
        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ==================== Cart pricing ====================

    async def price_items(
        self,
        items: list[dict[str, Any]],
        strict: bool = False,
    ) -> list[CartLine]:
        """
        Price raw cart items against the current catalog.

        Args:
            items: List of {product_id, quantity}
            strict: Raise for missing products or short stock instead of
                skipping them

        Returns:
            Cart lines in the order given
        """
        products = await self.get_products_by_ids([int(i["product_id"]) for i in items])

        lines = []
        for item in items:
            product = products.get(int(item["product_id"]))
            quantity = int(item["quantity"])
            if not product:
                if strict:
                    raise ValidationError(f"Product {item['product_id']} not found")
                continue
            if strict and product.available_quantity < quantity:
                raise InsufficientStockError(product.name, product.available_quantity)

            lines.append(
                CartLine(
                    product_id=product.id,
                    name=product.name,
                    price=product.price,
                    quantity=quantity,
                    seller_id=product.seller_id,
                    available=product.available_quantity,
                    image_url=product.image_urls[0] if product.image_urls else None,
                )
            )
        return lines


def serialize_product(product: Product, detail: bool = False) -> dict[str, Any]:
    """Render a product for API responses."""
    data = {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "price": float(product.price),
        "stock": product.available_quantity,
        "in_stock": product.is_in_stock,
        "images": product.image_urls or [],
        "category_id": product.category_id,
        "seller_id": product.seller_id,
        "review_count": product.review_count,
        "average_rating": round(product.average_rating or 0.0, 2),
        "created_at": product.created_at.isoformat(),
    }
    if "category" in product.__dict__ and product.category:
        data["category"] = {"id": product.category.id, "name": product.category.name}
    if "seller" in product.__dict__ and product.seller:
        data["seller"] = {"id": product.seller.id, "name": product.seller.full_name}
    if detail:
        data["description"] = product.description
        if "reviews" in product.__dict__:
            data["reviews"] = [
                {
                    "id": r.id,
                    "rating": r.rating,
                    "comment": r.comment,
                    "user": r.user.full_name if r.user else None,
                    "created_at": r.created_at.isoformat(),
                }
                for r in sorted(product.reviews, key=lambda r: r.created_at, reverse=True)
            ]
    return data
