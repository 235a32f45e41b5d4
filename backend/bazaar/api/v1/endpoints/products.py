"""
Catalog API Endpoints.

Categories, product listing and seller product management.
"""

from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.api.deps import require_admin, require_seller
from bazaar.core.database import get_db
from bazaar.models.user import User
from bazaar.modules.shop.service import SORT_FIELDS, ShopService, serialize_product
from bazaar.modules.shop.uploads import ImageStorage, get_image_storage

router = APIRouter()


# ==================== Schemas ====================


class CategoryRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None


class ProductRequest(BaseModel):
    """Create a product."""

    name: str = Field(min_length=1, max_length=255)
    description: str
    price: Decimal = Field(gt=0)
    category_id: int
    stock_quantity: int = Field(0, ge=0)


class UpdateProductRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    price: Decimal | None = Field(None, gt=0)
    category_id: int | None = None
    stock_quantity: int | None = Field(None, ge=0)


# ==================== Categories ====================


@router.get("/categories")
async def get_categories(
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get active product categories."""
    categories = await ShopService(db).get_categories()
    return {
        "categories": [
            {
                "id": cat.id,
                "name": cat.name,
                "slug": cat.slug,
                "description": cat.description,
            }
            for cat in categories
        ]
    }


@router.post("/categories", status_code=201)
async def create_category(
    request: CategoryRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    category = await ShopService(db).create_category(request.name, request.description)
    return {
        "category": {
            "id": category.id,
            "name": category.name,
            "slug": category.slug,
            "description": category.description,
        }
    }


# ==================== Products ====================


@router.get("")
async def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: int | None = Query(None, description="Filter by category id"),
    min_price: Decimal | None = Query(None, ge=0),
    max_price: Decimal | None = Query(None, ge=0),
    search: str | None = Query(None, description="Search query"),
    sort_by: str = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """
    Get products with filtering, sorting and pagination.
    """
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by {sort_by}")

    result = await ShopService(db).get_products(
        category_id=category,
        min_price=min_price,
        max_price=max_price,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {
        "products": [serialize_product(p) for p in result.items],
        "pagination": result.meta("total_products"),
    }


@router.get("/{product_id}")
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get product details with reviews."""
    product = await ShopService(db).get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": serialize_product(product, detail=True)}


@router.post("", status_code=201)
async def create_product(
    request: ProductRequest,
    seller: User = Depends(require_seller),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    shop = ShopService(db)
    product = await shop.create_product(
        seller_id=seller.id,
        name=request.name,
        description=request.description,
        price=request.price,
        category_id=request.category_id,
        stock_quantity=request.stock_quantity,
    )
    product = await shop.get_product(product.id)
    return {
        "message": "Product created successfully",
        "product": serialize_product(product, detail=True),
    }


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    request: UpdateProductRequest,
    seller: User = Depends(require_seller),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    product = await ShopService(db).update_product(
        product_id, seller.id, request.model_dump(exclude_unset=True)
    )
    return {
        "message": "Product updated successfully",
        "product": serialize_product(product, detail=True),
    }


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    seller: User = Depends(require_seller),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    await ShopService(db).delete_product(product_id, seller.id)
    return {"message": "Product deleted successfully"}


@router.post("/{product_id}/images")
async def upload_product_images(
    product_id: int,
    images: list[UploadFile] = File(...),
    seller: User = Depends(require_seller),
    db: AsyncSession = Depends(get_db),
    storage: ImageStorage = Depends(get_image_storage),
) -> dict[str, Any]:
    """Attach up to five JPEG, PNG or WebP images to a product."""
    shop = ShopService(db)
    product = await shop.get_owned_product(product_id, seller.id)
    urls = await storage.save_product_images(images)
    product = await shop.add_images(product, urls)
    return {
        "message": "Images uploaded successfully",
        "images": product.image_urls,
    }
