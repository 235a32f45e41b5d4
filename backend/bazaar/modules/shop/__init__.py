"""
Shop Module - Marketplace functionality.

Features:
- Product catalog with categories
- Shopping cart
- Checkout with Stripe payments or cash on delivery
- Stock reservations and order lifecycle
- Seller dashboards
- Reviews
"""

from bazaar.modules.shop.cart import CartService
from bazaar.modules.shop.orders import OrderService, ReservationSweeper
from bazaar.modules.shop.payment import PaymentService
from bazaar.modules.shop.reviews import ReviewService
from bazaar.modules.shop.seller import SellerService
from bazaar.modules.shop.service import ShopService
from bazaar.modules.shop.uploads import ImageStorage

__all__ = [
    "ShopService",
    "CartService",
    "PaymentService",
    "OrderService",
    "ReservationSweeper",
    "ReviewService",
    "SellerService",
    "ImageStorage",
]
