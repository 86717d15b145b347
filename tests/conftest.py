"""Pytest configuration and shared fixtures for all tests.

This module provides shared test fixtures including:
- In-memory SQLite database with the ORM schema
- Settings with a fixed encryption key and auth secret
- Repositories wired into a shared context
- Seeded users, catalog and an unpaid order
- Request context builders carrying cookies between requests
"""

import time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from guest_payment.api.adapter import build_shared_context
from guest_payment.config import Settings
from guest_payment.domain.context import PageKind, RequestContext, ResponseDirectives
from guest_payment.domain.encryption import TokenCodec
from guest_payment.domain.models import Order, OrderKind, OrderLineItem, Product, User
from guest_payment.domain.services import TokenLifecycleManager
from guest_payment.infrastructure.cart_session import SessionCart
from guest_payment.infrastructure.database import Base, init_db
from guest_payment.infrastructure.session_auth import SignedCookieAuth, sign_auth_value
from guest_payment.pipeline import GuestPaymentPipeline

TEST_ENCRYPTION_KEY = "6b1f3c0d9e2a4b7c8d5e6f708192a3b4c5d6e7f8091a2b3c4d5e6f708192a3b4"
TEST_AUTH_SECRET = "test-auth-secret-key"
TEST_SITE_URL = "http://shop.test"

CUSTOMER_ID = 10
OPERATOR_ID = 1
ORDER_ID = 500

SIMPLE_PRODUCT_ID = 21
FREE_PRODUCT_ID = 22
VARIABLE_PRODUCT_ID = 30
VARIATION_ID = 31


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        encryption_key=TEST_ENCRYPTION_KEY,
        auth_secret_key=TEST_AUTH_SECRET,
        cookie_secure=False,
        site_url=TEST_SITE_URL,
        log_json=False,
    )


@pytest.fixture
def test_engine():
    """Create an in-memory engine shared across threads (for TestClient)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def shared(db_session, settings):
    return build_shared_context(db_session, settings)


@pytest.fixture
def codec(settings) -> TokenCodec:
    return TokenCodec.from_settings(settings)


@pytest.fixture
def lifecycle(codec, shared, settings) -> TokenLifecycleManager:
    return TokenLifecycleManager(codec, shared.orders, shared.handoffs, settings)


@pytest.fixture
def pipeline(shared, codec) -> GuestPaymentPipeline:
    return GuestPaymentPipeline.build(shared, codec)


def seed_data(shared) -> Order:
    """Seed an operator, a customer, a small catalog and order #500.

    Order #500 owes 62.50: two simple products at 15.00, one variation at
    20.00 and one line whose catalog price is blank (12.50 on the order).
    """
    shared.users.add(User(id=OPERATOR_ID, email="ops@shop.test", display_name="Ops", is_operator=True))
    shared.users.add(User(id=CUSTOMER_ID, email="customer@example.com", display_name="Customer"))

    catalog = shared.catalog
    catalog.add(Product(id=SIMPLE_PRODUCT_ID, price=Decimal("15.00"), name="Coffee"))
    catalog.add(Product(id=FREE_PRODUCT_ID, price=None, name="Custom engraving"))
    catalog.add(Product(id=VARIABLE_PRODUCT_ID, product_type="variable", name="Mug"))
    catalog.add(
        Product(
            id=VARIATION_ID,
            product_type="variation",
            price=Decimal("20.00"),
            parent_id=VARIABLE_PRODUCT_ID,
            name="Mug - Blue",
        )
    )

    return shared.orders.add(
        Order(
            id=ORDER_ID,
            kind=OrderKind.ORDER,
            status="pending",
            customer_id=CUSTOMER_ID,
            items=[
                OrderLineItem(id=0, name="Coffee", product_id=SIMPLE_PRODUCT_ID, quantity=2, total=Decimal("30.00")),
                OrderLineItem(
                    id=0,
                    name="Mug - Blue",
                    product_id=VARIABLE_PRODUCT_ID,
                    variation_id=VARIATION_ID,
                    quantity=1,
                    total=Decimal("20.00"),
                    variation_attributes={"color": "blue"},
                ),
                OrderLineItem(id=0, name="Custom engraving", product_id=FREE_PRODUCT_ID, quantity=1, total=Decimal("12.50")),
                OrderLineItem(id=0, item_type="shipping", name="Flat rate", total=Decimal("5.00")),
            ],
        )
    )


@pytest.fixture
def seeded(shared) -> Order:
    return seed_data(shared)


def auth_cookie_value(settings: Settings, user_id: int, lifetime: int = 3600) -> str:
    return sign_auth_value(settings.auth_secret_key, user_id, int(time.time()) + lifetime)


def carry_cookies(ctx: RequestContext) -> dict[str, str]:
    """Cookies a browser would send on the next request after ``ctx``."""
    jar = dict(ctx.cookies)
    for directive in ctx.response.cookies:
        if directive.delete:
            jar.pop(directive.name, None)
        else:
            jar[directive.name] = directive.value
    return jar


@pytest.fixture
def make_ctx(shared, settings):
    """Build a request context the way the HTTP adapter does."""

    def _make(
        page: PageKind = PageKind.OTHER,
        query: dict | None = None,
        cookies: dict | None = None,
        user_id: int | None = None,
        client_ip: str = "203.0.113.7",
        page_order_id: int | None = None,
        url: str | None = None,
    ) -> RequestContext:
        jar = dict(cookies or {})
        if user_id is not None:
            jar[settings.auth_cookie_name] = auth_cookie_value(settings, user_id)

        response = ResponseDirectives()
        auth = SignedCookieAuth(jar, response, settings)
        return RequestContext(
            page=page,
            url=url or settings.url("/"),
            auth=auth,
            cart=SessionCart(shared.store, shared.catalog, auth),
            query=dict(query or {}),
            cookies=jar,
            client_ip=client_ip,
            page_order_id=page_order_id,
            response=response,
        )

    return _make
