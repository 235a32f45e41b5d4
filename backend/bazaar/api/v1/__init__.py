"""
API Version 1 Router.

Combines all API endpoints under /api/v1 prefix.
"""

from fastapi import APIRouter

from bazaar.api.v1.endpoints import (
    auth,
    cart,
    orders,
    products,
    reviews,
    sellers,
    users,
    webhooks,
)

router = APIRouter()

# Include endpoint routers
router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(products.router, prefix="/products", tags=["Catalog"])
router.include_router(cart.router, prefix="/cart", tags=["Cart"])
router.include_router(orders.router, prefix="/orders", tags=["Orders"])
router.include_router(sellers.router, prefix="/sellers", tags=["Seller"])
router.include_router(reviews.router, prefix="/reviews", tags=["Reviews"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
