"""
Review API Endpoints.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bazaar.api.deps import get_current_user
from bazaar.core.database import get_db
from bazaar.models.user import User
from bazaar.modules.shop.reviews import ReviewService, serialize_review

router = APIRouter()


class ReviewRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)


@router.get("/{product_id}")
async def get_reviews(
    product_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Reviews of a product, newest first."""
    reviews = await ReviewService(db).get_product_reviews(product_id)
    return {"reviews": [serialize_review(r) for r in reviews]}


@router.post("/{product_id}", status_code=201)
async def add_review(
    product_id: int,
    request: ReviewRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Review a product the user has received."""
    review = await ReviewService(db).add_review(
        user_id=user.id,
        product_id=product_id,
        rating=request.rating,
        comment=request.comment,
    )
    return {"message": "Review added successfully", "review": serialize_review(review)}
