import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from bazaar.core.exceptions import AuthenticationError, InsufficientStockError, NotFoundError
from bazaar.core.security import (
    REFRESH_TOKEN,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_secret,
    verify_secret,
)
from bazaar.modules.shop.payment import PaymentService, session_lifetime, to_minor_units
from bazaar.modules.shop.service import Page


def test_minor_units():
    assert to_minor_units(Decimal("499.99")) == 49999
    assert to_minor_units(Decimal("30")) == 3000


def test_session_lifetime_has_stripe_minimum():
    assert session_lifetime(10) == 31
    assert session_lifetime(45) == 45


async def test_stripe_calls_leave_event_loop_thread(monkeypatch):
    loop_thread = threading.get_ident()
    calls = []

    def create(**params):
        calls.append((threading.get_ident(), params))
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/1")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)

    session = await PaymentService().create_checkout_session(
        order_id=1,
        order_number="BZ-1",
        items=[{"name": "Mug", "price": Decimal("12.50"), "quantity": 2}],
        delivery_fee=Decimal("30"),
        expires_in_minutes=10,
    )

    assert session == {"session_id": "cs_test_1", "url": "https://checkout.stripe.test/1"}
    thread_id, params = calls[0]
    assert thread_id != loop_thread
    assert [line["price_data"]["unit_amount"] for line in params["line_items"]] == [1250, 3000]


def test_verify_urls():
    success, cancel = PaymentService().verify_urls(42)

    assert success.endswith("/verify?success=true&orderId=42")
    assert cancel.endswith("/verify?success=false&orderId=42")


def test_token_types_are_not_interchangeable():
    access = create_access_token(7)
    refresh = create_refresh_token(7)

    assert decode_token(access) == 7
    assert decode_token(refresh, REFRESH_TOKEN) == 7
    with pytest.raises(AuthenticationError):
        decode_token(refresh)


def test_secret_hashing():
    hashed = hash_secret("123456")

    assert verify_secret("123456", hashed)
    assert not verify_secret("654321", hashed)
    assert not verify_secret("123456", "not-a-hash")


def test_page_meta():
    meta = Page(items=[], page=2, limit=10, total=25).meta("total_products")

    assert meta == {
        "current_page": 2,
        "total_pages": 3,
        "total_products": 25,
        "has_next": True,
        "has_prev": True,
    }


async def test_cart_merges_quantities(cart):
    await cart.add_item(1, product_id=5, quantity=2, available=10)
    items = await cart.add_item(1, product_id=5, quantity=3, available=10)

    assert items == [{"product_id": 5, "quantity": 5}]
    assert await cart.get_items(1) == items


async def test_cart_respects_available(cart):
    with pytest.raises(InsufficientStockError):
        await cart.add_item(1, product_id=5, quantity=4, available=3, product_name="Mug")


async def test_cart_update_missing_item(cart):
    with pytest.raises(NotFoundError):
        await cart.update_quantity(1, product_id=5, quantity=1, available=3)


async def test_cart_removing_last_item_deletes_key(cart):
    await cart.add_item(1, product_id=5, quantity=1, available=3)
    await cart.remove_item(1, product_id=5)

    assert await cart._redis.exists("cart:1") == 0
