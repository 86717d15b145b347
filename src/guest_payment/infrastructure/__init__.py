"""Infrastructure layer exports."""

from guest_payment.infrastructure.cart_session import SessionCart
from guest_payment.infrastructure.notifier import OutboxPaymentNotifier
from guest_payment.infrastructure.repository import (
    CatalogRepository,
    KeyValueRepository,
    OrderRepository,
    UserRepository,
)
from guest_payment.infrastructure.session_auth import SignedCookieAuth

__all__ = [
    "OrderRepository",
    "UserRepository",
    "CatalogRepository",
    "KeyValueRepository",
    "SessionCart",
    "SignedCookieAuth",
    "OutboxPaymentNotifier",
]
