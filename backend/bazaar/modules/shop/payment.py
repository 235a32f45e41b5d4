"""
Payment Service - Stripe integration.

Handles:
- Checkout sessions
- Session status lookups
- Webhooks
- Refunds
"""

import asyncio
import json
import time
from decimal import Decimal
from typing import Any

import stripe
from loguru import logger

from bazaar.core.config import settings
from bazaar.core.exceptions import PaymentGatewayError

# Stripe rejects checkout sessions that expire sooner than 30 minutes
MIN_SESSION_MINUTES = 31


def to_minor_units(amount: Decimal) -> int:
    """Stripe expects amounts in the smallest currency unit."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


def session_lifetime(minutes: int) -> int:
    """Minutes a checkout session stays payable for the requested lifetime."""
    return max(minutes, MIN_SESSION_MINUTES)


class PaymentService:
    """
    Stripe payment service.

    Usage:
        payment = PaymentService()
        session = await payment.create_checkout_session(order_id, ...)
    """

    def __init__(self) -> None:
        """Initialize Stripe with API key."""
        stripe.api_key = settings.stripe_secret_key
        if not settings.stripe_secret_key:
            logger.warning("STRIPE_SECRET_KEY not configured")

    @property
    def is_configured(self) -> bool:
        return bool(settings.stripe_secret_key)

    def verify_urls(self, order_id: int) -> tuple[str, str]:
        """Return the (success, cancel) redirect URLs for an order."""
        base = settings.frontend_url.rstrip("/")
        return (
            f"{base}/verify?success=true&orderId={order_id}",
            f"{base}/verify?success=false&orderId={order_id}",
        )

    async def create_checkout_session(
        self,
        order_id: int,
        order_number: str,
        items: list[dict[str, Any]],
        delivery_fee: Decimal,
        customer_email: str | None = None,
        expires_in_minutes: int | None = None,
    ) -> dict[str, Any]:
        """
        Create Stripe Checkout session.

        Args:
            order_id: Order the session pays for
            order_number: Human-readable order reference
            items: Line items [{name, price, quantity}]
            delivery_fee: Flat fee added as its own line
            customer_email: Pre-fill customer email
            expires_in_minutes: Session lifetime; Stripe accepts 30 min to 24 h

        Returns:
            Checkout session id and redirect URL
        """
        currency = settings.shop_currency.lower()
        line_items = [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": item["name"]},
                    "unit_amount": to_minor_units(item["price"]),
                },
                "quantity": item["quantity"],
            }
            for item in items
        ]
        if delivery_fee:
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": "Delivery Charges"},
                        "unit_amount": to_minor_units(delivery_fee),
                    },
                    "quantity": 1,
                }
            )

        success_url, cancel_url = self.verify_urls(order_id)
        session_params = {
            "payment_method_types": ["card"],
            "line_items": line_items,
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": str(order_id),
            "metadata": {"order_id": str(order_id), "order_number": order_number},
        }
        if customer_email:
            session_params["customer_email"] = customer_email
        if expires_in_minutes:
            session_params["expires_at"] = int(time.time()) + session_lifetime(expires_in_minutes) * 60

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **session_params)
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session: {e}")
            raise PaymentGatewayError("Could not create payment session") from e

        return {
            "session_id": session.id,
            "url": session.url,
        }

    async def get_session_status(self, session_id: str) -> dict[str, Any]:
        """
        Look up whether a checkout session has been paid.

        Returns:
            {paid, payment_intent}
        """
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe error retrieving session {session_id}: {e}")
            raise PaymentGatewayError("Could not confirm payment") from e

        return {
            "paid": session.payment_status == "paid",
            "payment_intent": session.payment_intent,
        }

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any] | None:
        """
        Verify Stripe webhook signature and return event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header

        Returns:
            Verified event {id, type, data} or None if invalid
        """
        try:
            await asyncio.to_thread(
                stripe.Webhook.construct_event,
                payload,
                signature,
                settings.stripe_webhook_secret,
            )
        except stripe.SignatureVerificationError:
            logger.warning("Invalid Stripe webhook signature")
            return None
        except ValueError as e:
            logger.warning(f"Malformed Stripe webhook payload: {e}")
            return None

        event = json.loads(payload)
        return {
            "id": event["id"],
            "type": event["type"],
            "data": event["data"]["object"],
        }

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: Decimal | None = None,
        reason: str = "requested_by_customer",
    ) -> dict[str, Any]:
        """
        Create refund for payment.

        Args:
            payment_intent_id: Original payment intent ID
            amount: Partial refund amount (None for full refund)
            reason: Refund reason

        Returns:
            Refund details
        """
        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "reason": reason,
        }
        if amount:
            refund_params["amount"] = to_minor_units(amount)

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **refund_params)
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating refund: {e}")
            raise PaymentGatewayError("Could not refund payment") from e

        return {
            "id": refund.id,
            "status": refund.status,
            "amount": refund.amount / 100,
        }


def get_payment_service() -> PaymentService:
    """Dependency provider, overridden in tests."""
    return PaymentService()
