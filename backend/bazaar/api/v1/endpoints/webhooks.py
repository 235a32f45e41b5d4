"""
Webhook Endpoints.

Handles incoming Stripe events for checkout sessions. Each event is
applied at most once, keyed by its event id.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from loguru import logger

from bazaar.api.deps import get_order_service
from bazaar.core.config import settings
from bazaar.modules.shop.orders import OrderService

router = APIRouter()


@router.post("/stripe", status_code=200)
async def stripe_webhook(
    request: Request,
    orders: OrderService = Depends(get_order_service),
) -> Response:
    """
    Stripe Webhook Endpoint.

    Security:
    - Validates the Stripe-Signature header
    - Returns 401 on invalid signature
    - Returns 200 on success, including duplicates (to acknowledge receipt)

    Handled events:
    - checkout.session.completed / async_payment_succeeded: confirm payment
    - checkout.session.expired / async_payment_failed: discard the order
    """
    body = await request.body()
    signature = request.headers.get("Stripe-Signature")

    if not signature:
        raise HTTPException(status_code=401, detail="Missing signature")

    event = await orders.payment.verify_webhook(body, signature)
    if not event:
        raise HTTPException(status_code=401, detail="Invalid signature")

    logger.info(f"Received Stripe webhook: {event['type']} ({event['id']})")

    applied = await orders.handle_payment_event(event)
    if not applied:
        logger.debug(f"Stripe event {event['id']} already handled")

    # Always return 200 once verified (Stripe retries on errors)
    return Response(status_code=200)


@router.get("/health")
async def webhook_health() -> dict:
    """Health check for webhook endpoints."""
    return {
        "status": "healthy",
        "stripe_configured": bool(settings.stripe_secret_key),
        "stripe_webhook_configured": bool(settings.stripe_webhook_secret),
    }
