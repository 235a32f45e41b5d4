"""
Shared fixtures.

The app runs against in-memory SQLite and fakeredis; Stripe and Resend are
replaced with recording fakes through their dependency providers.
"""

import json
import os
import tempfile
from decimal import Decimal
from typing import Any, AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("STRIPE_SECRET_KEY", "")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "")
os.environ.setdefault("RESEND_API_KEY", "")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="bazaar-uploads-"))

import pytest
from fakeredis import aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bazaar.core.database import Base, get_db, import_models
from bazaar.core.exceptions import PaymentGatewayError
from bazaar.core.security import create_access_token, hash_secret
from bazaar.main import app
from bazaar.models.shop import Category, Product
from bazaar.models.user import User, UserRole
from bazaar.modules.auth.mailer import get_mailer
from bazaar.modules.shop.cart import CartService, get_cart_service
from bazaar.modules.shop.payment import get_payment_service
from bazaar.modules.shop.uploads import ImageStorage, get_image_storage

PASSWORD = "secret-pass-1"


class FakePayment:
    """Stand-in for PaymentService that records what it was asked to do."""

    def __init__(self) -> None:
        self.configured = False
        self.fail_checkout = False
        self.session_paid = True
        self.sessions: list[dict[str, Any]] = []
        self.refunds: list[str] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def create_checkout_session(self, order_id: int, **kwargs: Any) -> dict[str, Any]:
        if self.fail_checkout:
            raise PaymentGatewayError("Could not create payment session")
        session = {"order_id": order_id, **kwargs}
        self.sessions.append(session)
        return {
            "session_id": f"cs_test_{order_id}",
            "url": f"https://checkout.stripe.test/{order_id}",
        }

    async def get_session_status(self, session_id: str) -> dict[str, Any]:
        return {"paid": self.session_paid, "payment_intent": f"pi_{session_id}"}

    async def verify_webhook(self, payload: bytes, signature: str) -> dict[str, Any] | None:
        if signature != "valid":
            return None
        event = json.loads(payload)
        return {"id": event["id"], "type": event["type"], "data": event["data"]["object"]}

    async def create_refund(self, payment_intent_id: str, **kwargs: Any) -> dict[str, Any]:
        self.refunds.append(payment_intent_id)
        return {"id": f"re_{payment_intent_id}", "status": "succeeded", "amount": 0}


class FakeMailer:
    def __init__(self) -> None:
        self.codes: dict[str, str] = {}
        self.fail = False

    async def send_otp(self, email: str, otp: str) -> bool:
        if self.fail:
            return False
        self.codes[email] = otp
        return True


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def cart() -> AsyncGenerator[CartService, None]:
    service = CartService(client=aioredis.FakeRedis(decode_responses=True))
    yield service
    await service.disconnect()


@pytest.fixture
def payment() -> FakePayment:
    return FakePayment()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def storage(tmp_path) -> ImageStorage:
    return ImageStorage(root=tmp_path)


@pytest.fixture
async def client(session_factory, cart, payment, mailer, storage) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_cart_service():
        return cart

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cart_service] = override_get_cart_service
    app.dependency_overrides[get_payment_service] = lambda: payment
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_image_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ==================== Data helpers ====================


@pytest.fixture
def make_user(session_factory):
    counter = {"n": 0}

    async def _make_user(role: UserRole = UserRole.CUSTOMER, **fields: Any) -> User:
        counter["n"] += 1
        async with session_factory() as session:
            user = User(
                email=fields.pop("email", f"{role.value}{counter['n']}@example.com"),
                hashed_password=hash_secret(fields.pop("password", PASSWORD)),
                first_name=fields.pop("first_name", role.value.title()),
                last_name=fields.pop("last_name", str(counter["n"])),
                role=role,
                **fields,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def make_product(session_factory):
    async def _make_product(
        seller: User,
        stock: int = 10,
        price: str = "100.00",
        name: str = "Desk Lamp",
        category: Category | None = None,
    ) -> Product:
        async with session_factory() as session:
            if category is None:
                category = Category(name=f"Category for {name}", slug=f"cat-{name.lower().replace(' ', '-')}")
                session.add(category)
                await session.flush()
            product = Product(
                name=name,
                slug=f"{name.lower().replace(' ', '-')}-{seller.id}",
                description=f"{name} description",
                price=Decimal(price),
                stock_quantity=stock,
                reserved_quantity=0,
                category_id=category.id,
                seller_id=seller.id,
                image_urls=[],
            )
            session.add(product)
            await session.commit()
            return product

    return _make_product


@pytest.fixture
def fetch(session_factory):
    """Load a fresh copy of a row, bypassing any cached state."""

    async def _fetch(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _fetch


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
async def customer(make_user) -> User:
    return await make_user(UserRole.CUSTOMER)


@pytest.fixture
async def seller(make_user) -> User:
    return await make_user(UserRole.SELLER)


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user(UserRole.ADMIN)


ADDRESS = {
    "street": "12 MG Road",
    "landmark": "Near the park",
    "address": "Flat 4B",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}
