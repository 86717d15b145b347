"""Guest payment domain layer.

This package contains the token codec, token lifecycle, cart rebuilding,
checkout guards and the session impersonation and delegation controllers.
"""

from guest_payment.domain.admin_actions import AdminActions
from guest_payment.domain.cart import CartGuard, CartReconstructionEngine
from guest_payment.domain.checkout_guard import DuplicateOrderGuard
from guest_payment.domain.delegation import AdminPaySession, OperatorDelegationController
from guest_payment.domain.encryption import (
    DecryptionError,
    EncryptedData,
    EncryptionError,
    TokenCodec,
    generate_raw_token,
)
from guest_payment.domain.exceptions import (
    AdminActionError,
    CheckoutBlockedError,
    ConfigurationError,
    DelegationError,
    GuestPaymentError,
    TokenError,
)
from guest_payment.domain.impersonation import SessionImpersonationController
from guest_payment.domain.models import (
    GenerationMethod,
    Order,
    OrderKind,
    OrderLineItem,
    Product,
    TokenValidation,
    ValidationStatus,
)
from guest_payment.domain.services import TokenLifecycleManager

__all__ = [
    # Models
    "Order",
    "OrderKind",
    "OrderLineItem",
    "Product",
    "GenerationMethod",
    "TokenValidation",
    "ValidationStatus",
    # Exceptions
    "GuestPaymentError",
    "ConfigurationError",
    "TokenError",
    "CheckoutBlockedError",
    "DelegationError",
    "AdminActionError",
    # Encryption
    "TokenCodec",
    "EncryptedData",
    "EncryptionError",
    "DecryptionError",
    "generate_raw_token",
    # Services
    "TokenLifecycleManager",
    "CartReconstructionEngine",
    "CartGuard",
    "DuplicateOrderGuard",
    "SessionImpersonationController",
    "OperatorDelegationController",
    "AdminPaySession",
    "AdminActions",
]
