"""
Order Service - Checkout, payment verification and order lifecycle.

Stock moves through two counters on the product:
- PlaceOrder reserves units (reserved_quantity += q), so stock_quantity is
  untouched while an online payment is pending.
- A confirmed payment, or a cash-on-delivery order, commits them
  (stock_quantity -= q, reserved_quantity -= q).
- A failed, cancelled or expired payment only releases the reservation.

Every transition that must happen at most once (paid flag, cancellation,
discarding a pending order) is a guarded UPDATE on the order row whose
WHERE clause restates the expected current state.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bazaar.core.config import settings
from bazaar.core.database import async_session_factory, utcnow
from bazaar.core.exceptions import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from bazaar.models.shop import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentEvent,
    PaymentMethod,
    Product,
)
from bazaar.models.user import User, UserRole
from bazaar.modules.shop.cart import CartService
from bazaar.modules.shop.payment import PaymentService, session_lifetime
from bazaar.modules.shop.service import CartLine, Page, ShopService

# Seller/admin status changes; anything else is rejected
STATUS_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
}

# Grace period between the gateway session expiring and the sweeper
# discarding the order, so a last-second payment webhook can still land.
RESERVATION_GRACE = timedelta(minutes=5)

PAID_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


@dataclass
class PlacedOrder:
    """Result of PlaceOrder."""

    order: Order
    checkout_url: str | None = None
    session_id: str | None = None


class OrderService:
    """
    Service for placing, paying for and managing orders.

    Usage:
        orders = OrderService(db_session, cart, payment)
        placed = await orders.place_order(user, address, PaymentMethod.ONLINE)
        await orders.verify_order(placed.order.id, success=True)
    """

    def __init__(
        self,
        db: AsyncSession,
        cart: CartService | None = None,
        payment: PaymentService | None = None,
    ) -> None:
        self.db = db
        self.shop = ShopService(db)
        self.cart = cart
        self.payment = payment

    # ==================== Queries ====================

    async def get_order(self, order_id: int) -> Order | None:
        """Get order with its items."""
        query = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.user))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_order_for(self, order_id: int, user: User) -> Order:
        """Get order if the user owns it, sold something in it, or is an admin."""
        order = await self.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")

        if (
            order.user_id != user.id
            and user.id not in order.seller_ids()
            and user.role != UserRole.ADMIN
        ):
            raise PermissionDeniedError("Not authorized to view this order")
        return order

    async def get_user_orders(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        """Get user's orders, newest first."""
        total = (
            await self.db.execute(
                select(func.count(Order.id)).where(Order.user_id == user_id)
            )
        ).scalar_one()

        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        result = await self.db.execute(query)
        return Page(items=list(result.scalars().all()), page=page, limit=limit, total=total)

    # ==================== Placement ====================

    async def place_order(
        self,
        user: User,
        address: dict[str, Any],
        payment_method: PaymentMethod,
        items: list[dict[str, Any]] | None = None,
        amount: Decimal | None = None,
    ) -> PlacedOrder:
        """
        Snapshot the cart into an order and start payment.

        Args:
            user: Customer placing the order
            address: Delivery address snapshot
            payment_method: online or cash_on_delivery
            items: Explicit [{product_id, quantity}]; defaults to the cart
            amount: Total the client expects to pay; must match the
                server-side total when given

        Returns:
            The order, plus the checkout URL for online payments

        Raises:
            ValidationError: empty cart, bad amount or address
            InsufficientStockError: a line cannot be reserved
            ConflictError: client amount differs from the current total
            PaymentGatewayError: checkout session could not be created
        """
        if not address:
            raise ValidationError("Shipping address is required")
        if not isinstance(payment_method, PaymentMethod):
            raise ValidationError("Invalid payment method")
        if amount is not None and amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        if items is None and self.cart is not None:
            items = await self.cart.get_items(user.id)
        items = self._merge_items(items or [])
        if not items:
            raise ValidationError("Cart is empty")

        lines = await self.shop.price_items(items, strict=True)

        subtotal = sum((line.total for line in lines), Decimal("0"))
        delivery_fee = Decimal(settings.delivery_fee)
        total = subtotal + delivery_fee
        if total <= 0:
            raise ValidationError("Amount must be greater than zero")
        if amount is not None and Decimal(str(amount)).quantize(Decimal("0.01")) != total:
            raise ConflictError(f"Order total has changed. Current total: {total}")

        await self._reserve_lines(lines)

        order = Order(
            order_number=f"BZ-{uuid4().hex[:10].upper()}",
            user_id=user.id,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            amount=total,
            address=address,
            payment_method=payment_method,
            paid=False,
            stock_committed=False,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    seller_id=line.seller_id,
                    product_name=line.name,
                    unit_price=line.price,
                    quantity=line.quantity,
                    total=line.total,
                )
                for line in lines
            ],
        )

        if payment_method == PaymentMethod.CASH_ON_DELIVERY:
            return await self._place_cod(order, lines)
        return await self._place_online(order, user)

    def _merge_items(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        merged: OrderedDict[int, int] = OrderedDict()
        for item in items:
            try:
                product_id = int(item["product_id"])
                quantity = int(item["quantity"])
            except (KeyError, TypeError, ValueError):
                raise ValidationError("Each item needs a product_id and quantity")
            if quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            merged[product_id] = merged.get(product_id, 0) + quantity
        return [{"product_id": pid, "quantity": qty} for pid, qty in merged.items()]

    async def _reserve_lines(self, lines: list[CartLine]) -> None:
        """Reserve every line or none of them."""
        reserved: list[CartLine] = []
        for line in lines:
            if await self.shop.reserve_stock(line.product_id, line.quantity):
                reserved.append(line)
                continue

            for done in reserved:
                await self.shop.release_stock(done.product_id, done.quantity)
            available = await self._available(line.product_id)
            logger.info(
                f"Reservation failed for product {line.product_id}: "
                f"wanted {line.quantity}, available {available}"
            )
            raise InsufficientStockError(line.name, available)

    async def _available(self, product_id: int) -> int:
        result = await self.db.execute(
            select(Product.stock_quantity - Product.reserved_quantity).where(
                Product.id == product_id
            )
        )
        return max(result.scalar_one_or_none() or 0, 0)

    async def _place_cod(self, order: Order, lines: list[CartLine]) -> PlacedOrder:
        for line in lines:
            await self.shop.commit_stock(line.product_id, line.quantity)

        order.status = OrderStatus.CONFIRMED
        order.stock_committed = True
        self.db.add(order)
        await self.db.commit()

        if self.cart is not None:
            await self.cart.clear(order.user_id)

        logger.info(
            f"COD order {order.order_number} placed by user {order.user_id} "
            f"for {order.amount}"
        )
        return PlacedOrder(order=order)

    async def _place_online(self, order: Order, user: User) -> PlacedOrder:
        if self.payment is None:
            raise ValidationError("Online payment is not available")

        lifetime = session_lifetime(settings.reservation_ttl_minutes)
        order.status = OrderStatus.PENDING_PAYMENT
        order.reservation_expires_at = utcnow() + timedelta(minutes=lifetime) + RESERVATION_GRACE
        self.db.add(order)
        await self.db.flush()

        try:
            session = await self.payment.create_checkout_session(
                order_id=order.id,
                order_number=order.order_number,
                items=[
                    {
                        "name": item.product_name,
                        "price": item.unit_price,
                        "quantity": item.quantity,
                    }
                    for item in order.items
                ],
                delivery_fee=order.delivery_fee,
                customer_email=user.email,
                expires_in_minutes=lifetime,
            )
        except Exception:
            # Nothing committed yet: the order and its reservations go away
            await self.db.rollback()
            raise

        order.payment_session_id = session["session_id"]
        await self.db.commit()

        logger.info(
            f"Online order {order.order_number} awaiting payment "
            f"(session {order.payment_session_id})"
        )
        return PlacedOrder(
            order=order,
            checkout_url=session["url"],
            session_id=session["session_id"],
        )

    # ==================== Verification ====================

    async def verify_order(self, order_id: int, success: bool) -> Order | None:
        """
        Settle an online order after the gateway redirect.

        On success the reservation becomes a sale, the cart is cleared and
        the order is marked paid; repeating the call changes nothing. On
        failure the reservation is released and the order deleted, unless
        the gateway reports the session as paid, in which case the order is
        confirmed instead.

        Returns:
            The confirmed order, or None when it was discarded
        """
        order = await self.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")

        if not success:
            if order.paid or order.status != OrderStatus.PENDING_PAYMENT:
                raise ConflictError("Order has already been confirmed")
            status = await self._session_status(order)
            if status is not None and status["paid"]:
                logger.info(
                    f"Order {order.order_number}: cancel redirect for a paid session, confirming"
                )
                return await self._confirm_payment(order, status["payment_intent"])
            await self._discard_pending(order, reason="payment cancelled")
            return None

        if order.paid:
            return order
        if order.status != OrderStatus.PENDING_PAYMENT:
            raise ConflictError("Order is not awaiting payment")

        payment_intent = None
        status = await self._session_status(order)
        if status is not None:
            if not status["paid"]:
                raise ConflictError("Payment has not been completed")
            payment_intent = status["payment_intent"]

        return await self._confirm_payment(order, payment_intent)

    async def _session_status(self, order: Order) -> dict[str, Any] | None:
        """Gateway view of the order's checkout session, None when unavailable."""
        if self.payment is None or not self.payment.is_configured or not order.payment_session_id:
            return None
        return await self.payment.get_session_status(order.payment_session_id)

    async def _confirm_payment(self, order: Order, payment_intent: str | None) -> Order:
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.paid == False,
                Order.status == OrderStatus.PENDING_PAYMENT,
            )
            .values(
                paid=True,
                paid_at=utcnow(),
                status=OrderStatus.CONFIRMED,
                stock_committed=True,
                payment_intent_id=payment_intent,
                reservation_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Confirmed by a concurrent request or webhook
            return await self.get_order(order.id)

        for item in order.items:
            if item.product_id is None:
                continue
            if not await self.shop.commit_stock(item.product_id, item.quantity):
                logger.error(
                    f"Order {order.order_number}: reservation for product "
                    f"{item.product_id} missing at payment confirmation"
                )
                await self.db.rollback()
                raise ConflictError(
                    f"Stock for {item.product_name} is no longer reserved"
                )

        await self.db.commit()
        order = await self.get_order(order.id)

        if self.cart is not None:
            await self.cart.clear(order.user_id)

        logger.info(f"Payment confirmed for order {order.order_number}")
        return order

    async def _discard_pending(self, order: Order, reason: str) -> bool:
        """Release a pending order's reservation and delete it."""
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.paid == False,
                Order.status == OrderStatus.PENDING_PAYMENT,
            )
            .values(status=OrderStatus.CANCELLED, cancelled_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        for item in order.items:
            if item.product_id is not None:
                await self.shop.release_stock(item.product_id, item.quantity)

        await self.db.delete(order)
        await self.db.flush()

        logger.info(
            f"Order {order.order_number} of user {order.user_id} discarded "
            f"({reason}), amount {order.amount}"
        )
        return True

    async def release_expired_reservations(self) -> int:
        """
        Discard online orders whose payment window has passed.

        Returns:
            Number of orders discarded
        """
        query = (
            select(Order)
            .options(selectinload(Order.items))
            .where(
                Order.status == OrderStatus.PENDING_PAYMENT,
                Order.paid == False,
                Order.reservation_expires_at < utcnow(),
            )
        )
        result = await self.db.execute(query)

        released = 0
        for order in result.scalars().all():
            if await self._discard_pending(order, reason="reservation expired"):
                released += 1
        return released

    # ==================== Webhooks ====================

    async def handle_payment_event(self, event: dict[str, Any]) -> bool:
        """
        Apply a verified gateway event exactly once.

        Returns:
            False when the event id was already processed
        """
        existing = await self.db.execute(
            select(PaymentEvent.id).where(PaymentEvent.event_id == event["id"])
        )
        if existing.scalar_one_or_none() is not None:
            logger.info(f"Skipping duplicate payment event {event['id']}")
            return False

        session = event.get("data") or {}
        metadata = session.get("metadata") or {}
        raw_order_id = metadata.get("order_id") or session.get("client_reference_id")
        order_id = int(raw_order_id) if raw_order_id else None

        self.db.add(
            PaymentEvent(event_id=event["id"], event_type=event["type"], order_id=order_id)
        )
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Payment event {event['id']} processed concurrently")
            return False

        paid_event = event["type"] in PAID_EVENTS and session.get("payment_status") == "paid"
        order = await self.get_order(order_id) if order_id else None
        if order is None:
            if paid_event:
                await self._refund_orphaned(event["id"], raw_order_id, session.get("payment_intent"))
            else:
                logger.warning(
                    f"Payment event {event['id']} references unknown order {raw_order_id}"
                )
            return True

        if event["type"] in PAID_EVENTS:
            if session.get("payment_status") == "paid" and not order.paid:
                await self._confirm_payment(order, session.get("payment_intent"))
        elif event["type"] in ("checkout.session.expired", "checkout.session.async_payment_failed"):
            await self._discard_pending(order, reason=event["type"])

        return True

    async def _refund_orphaned(
        self,
        event_id: str,
        order_ref: str | None,
        payment_intent: str | None,
    ) -> None:
        """Return money captured for an order that no longer exists."""
        logger.error(
            f"Payment event {event_id} captured payment {payment_intent} "
            f"for missing order {order_ref}"
        )
        if self.payment is None or not payment_intent:
            return

        refund = await self.payment.create_refund(payment_intent)
        logger.info(f"Refunded {payment_intent} for missing order {order_ref} ({refund['id']})")

    # ==================== Lifecycle ====================

    async def cancel_order(self, order_id: int, user: User) -> Order:
        """Customer cancellation of a confirmed, not yet shipped order."""
        order = await self.get_order(order_id)
        if not order or order.user_id != user.id:
            raise NotFoundError("Order not found")
        if order.status != OrderStatus.CONFIRMED:
            raise ConflictError("Only confirmed orders can be cancelled")

        return await self._cancel(order, OrderStatus.CONFIRMED)

    async def update_status(
        self,
        order_id: int,
        actor: User,
        new_status: OrderStatus,
    ) -> Order:
        """Seller or admin moves an order along its lifecycle."""
        order = await self.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if actor.role != UserRole.ADMIN and actor.id not in order.seller_ids():
            raise PermissionDeniedError("Not authorized to update this order")

        current = order.status
        if new_status not in STATUS_TRANSITIONS.get(current, set()):
            raise ValidationError(f"Cannot change status from {current.value} to {new_status.value}")

        if new_status == OrderStatus.CANCELLED:
            return await self._cancel(order, current)

        values: dict[str, Any] = {"status": new_status}
        if new_status == OrderStatus.DELIVERED:
            values["delivered_at"] = utcnow()
            if order.payment_method == PaymentMethod.CASH_ON_DELIVERY and not order.paid:
                values["paid"] = True
                values["paid_at"] = utcnow()

        order = await self._guarded_transition(order, current, values)
        logger.info(
            f"Order {order.order_number}: {current.value} -> {new_status.value} "
            f"by user {actor.id}"
        )
        return order

    async def _guarded_transition(
        self,
        order: Order,
        expected: OrderStatus,
        values: dict[str, Any],
    ) -> Order:
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Order was modified concurrently")
        return await self.get_order(order.id)

    async def _cancel(self, order: Order, expected: OrderStatus) -> Order:
        was_committed = order.stock_committed
        order = await self._guarded_transition(
            order,
            expected,
            {
                "status": OrderStatus.CANCELLED,
                "cancelled_at": utcnow(),
                "stock_committed": False,
            },
        )

        if was_committed:
            for item in order.items:
                if item.product_id is not None:
                    await self.shop.restore_stock(item.product_id, item.quantity)

        if (
            order.paid
            and order.payment_method == PaymentMethod.ONLINE
            and order.payment_intent_id
            and self.payment is not None
            and self.payment.is_configured
        ):
            refund = await self.payment.create_refund(order.payment_intent_id)
            order.refund_id = refund["id"]
            await self.db.flush()

        logger.info(f"Order {order.order_number} cancelled, stock restored")
        return order


class ReservationSweeper:
    """
    Periodically releases reservations of abandoned online checkouts.

    Started and stopped by the application lifespan.
    """

    def __init__(self, interval: float | None = None) -> None:
        self.interval = interval or settings.reservation_sweep_interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Reservation sweeper started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
        logger.info("Reservation sweeper stopped")

    async def sweep_once(self) -> int:
        async with async_session_factory() as session:
            released = await OrderService(session).release_expired_reservations()
            await session.commit()
        if released:
            logger.info(f"Released {released} expired reservations")
        return released

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Reservation sweep error: {e}")

            await asyncio.sleep(self.interval)


def serialize_order(order: Order, seller_id: int | None = None) -> dict[str, Any]:
    """Render an order; with seller_id only that seller's items are shown."""
    items = [
        item for item in order.items
        if seller_id is None or item.seller_id == seller_id
    ]
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status.value,
        "items": [
            {
                "product_id": item.product_id,
                "seller_id": item.seller_id,
                "name": item.product_name,
                "unit_price": float(item.unit_price),
                "quantity": item.quantity,
                "total": float(item.total),
            }
            for item in items
        ],
        "subtotal": float(order.subtotal),
        "delivery_fee": float(order.delivery_fee),
        "amount": float(order.amount),
        "address": order.address,
        "payment_method": order.payment_method.value,
        "paid": order.paid,
        "created_at": order.created_at.isoformat(),
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "cancelled_at": order.cancelled_at.isoformat() if order.cancelled_at else None,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
    }
