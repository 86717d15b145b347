"""Domain value types for orders, catalog products, carts and tokens."""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum

from guest_payment.config import Settings

# Order meta keys holding the token field set
META_TOKEN_ENCRYPTED = "_guest_payment_token_encrypted"
META_TOKEN_HASH = "_guest_payment_token_hash"
META_TOKEN_CREATED = "_guest_payment_token_created"
META_OWNER_USER_ID = "_guest_payment_user_id"
META_PAYER_EMAIL = "_guest_payment_email"
META_GENERATION_METHOD = "_guest_payment_generation_method"

# Credential fields removed on invalidation; owner and email stay cached
CREDENTIAL_META_KEYS = (
    META_TOKEN_ENCRYPTED,
    META_TOKEN_HASH,
    META_TOKEN_CREATED,
    META_GENERATION_METHOD,
)

# User meta keys mirroring an impersonated session
USER_META_TOKEN_VALIDATION = "_guest_payment_token_validation"
USER_META_ORIGINAL_ORDER_ID = "_guest_payment_original_order_id"
USER_META_CART_KEY = "_guest_payment_cart_key"

PAID_STATUSES = frozenset({"processing", "completed"})
PRODUCT_LINE = "line_item"


class OrderKind(str, Enum):
    ORDER = "order"
    SUBSCRIPTION = "subscription"


class GenerationMethod(str, Enum):
    EMAIL = "email"
    MANUAL = "manual"


class ValidationStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    EXPIRED_OR_TAMPERED = "expired_or_tampered"


@dataclass
class OrderLineItem:
    """A historical line on an order."""

    id: int
    item_type: str = PRODUCT_LINE
    name: str = ""
    product_id: int = 0
    variation_id: int = 0
    quantity: int = 1
    total: Decimal = Decimal("0")
    variation_attributes: dict[str, str] = field(default_factory=dict)
    meta: dict[str, str] = field(default_factory=dict)

    @property
    def is_product_line(self) -> bool:
        return self.item_type == PRODUCT_LINE


@dataclass
class Order:
    """An order or subscription-like record (the ``OrderLike`` variant).

    Status gating branches once on ``kind``; callers never check for
    subscription-ness themselves.
    """

    id: int
    kind: OrderKind = OrderKind.ORDER
    status: str = "pending"
    customer_id: int | None = None
    cart_hash: str = ""
    items: list[OrderLineItem] = field(default_factory=list)
    meta: dict[str, str] = field(default_factory=dict)

    def allowed_statuses(self, settings: Settings) -> list[str]:
        if self.kind is OrderKind.SUBSCRIPTION:
            return settings.allowed_subscription_statuses
        return settings.allowed_order_statuses

    def has_allowed_status(self, settings: Settings) -> bool:
        return self.status in self.allowed_statuses(settings)

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES

    @property
    def has_token(self) -> bool:
        return bool(self.meta.get(META_TOKEN_ENCRYPTED)) and bool(self.meta.get(META_TOKEN_HASH))

    @property
    def owner_user_id(self) -> int | None:
        """Cached token owner, falling back to the assigned customer."""
        cached = self.meta.get(META_OWNER_USER_ID, "")
        if cached.isdigit() and int(cached) > 0:
            return int(cached)
        return self.customer_id or None


@dataclass(frozen=True)
class Product:
    """Catalog entry as seen by cart reconstruction."""

    id: int
    product_type: str = "simple"
    price: Decimal | None = None
    parent_id: int = 0
    purchasable: bool = True
    in_stock: bool = True
    name: str = ""

    @property
    def is_variable(self) -> bool:
        return self.product_type in ("variable", "variable-subscription")

    @property
    def is_subscription(self) -> bool:
        return self.product_type in ("subscription", "variable-subscription")

    @property
    def has_price(self) -> bool:
        return self.price is not None and self.price != 0

    @property
    def is_available(self) -> bool:
        """Purchasable and in stock under the regular catalog rules."""
        return self.purchasable and self.in_stock


@dataclass
class CartLine:
    """A line in the live cart.

    ``custom_price`` overrides the catalog price when totals are computed.
    """

    key: str
    product_id: int
    variation_id: int = 0
    quantity: int = 1
    variation_attributes: dict[str, str] = field(default_factory=dict)
    custom_price: Decimal | None = None
    line_total: Decimal = Decimal("0")
    line_subtotal: Decimal = Decimal("0")
    line_tax: Decimal = Decimal("0")
    item_data: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in ("custom_price", "line_total", "line_subtotal", "line_tax"):
            if data[name] is not None:
                data[name] = str(data[name])
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        custom_price = data.get("custom_price")
        return cls(
            key=data["key"],
            product_id=int(data["product_id"]),
            variation_id=int(data.get("variation_id") or 0),
            quantity=int(data.get("quantity") or 1),
            variation_attributes=dict(data.get("variation_attributes") or {}),
            custom_price=Decimal(custom_price) if custom_price not in (None, "") else None,
            line_total=Decimal(data.get("line_total") or "0"),
            line_subtotal=Decimal(data.get("line_subtotal") or "0"),
            line_tax=Decimal(data.get("line_tax") or "0"),
            item_data=dict(data.get("item_data") or {}),
        )


@dataclass(frozen=True)
class User:
    id: int
    email: str = ""
    display_name: str = ""
    is_operator: bool = False


@dataclass(frozen=True)
class TokenValidation:
    """Outcome of validating a raw token."""

    status: ValidationStatus
    order: Order | None = None

    @property
    def is_valid(self) -> bool:
        return self.status is ValidationStatus.FOUND


@dataclass(frozen=True)
class PresentableToken:
    """Decrypted token data for display or resend."""

    raw_token: str
    payer_email: str
    owner_user_id: int
    created_at: int
    method: GenerationMethod
