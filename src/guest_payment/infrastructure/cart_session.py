"""Persistent per-user cart backed by the key/value store."""

import hashlib
import json
from decimal import Decimal
from typing import Optional

import structlog

from guest_payment.domain.interfaces import ICartSession, ICatalog, IKeyValueStore, ISessionAuth
from guest_payment.domain.models import CartLine

logger = structlog.get_logger(__name__)

KEY_PREFIX = "gp_session_cart_"
DEFAULT_TTL_SECONDS = 2 * 86400


def cart_line_key(
    product_id: int,
    variation_id: int,
    variation_attributes: dict[str, str],
    item_data: dict[str, str],
) -> str:
    """Deterministic line key: the same product configuration merges into one line."""
    payload = json.dumps(
        [product_id, variation_id, sorted(variation_attributes.items()), sorted(item_data.items())],
        separators=(",", ":"),
    )
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class SessionCart(ICartSession):
    """Cart of whoever is currently authenticated.

    The owner is resolved on every call, so authenticating as another user
    mid-request switches to that user's cart.
    """

    def __init__(
        self,
        store: IKeyValueStore,
        catalog: ICatalog,
        auth: ISessionAuth,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.store = store
        self.catalog = catalog
        self.auth = auth
        self.ttl_seconds = ttl_seconds
        self._loaded_key: Optional[str] = None
        self._lines: list[CartLine] = []
        self._awaiting_order_id: Optional[int] = None
        self.total = Decimal("0")

    def _storage_key(self) -> str:
        user_id = self.auth.get_current_user_id()
        return KEY_PREFIX + (str(user_id) if user_id else "guest")

    def _state(self) -> None:
        key = self._storage_key()
        if key == self._loaded_key:
            return

        data = self.store.get(key) or {}
        self._loaded_key = key
        self._lines = [CartLine.from_dict(item) for item in data.get("lines", [])]
        self._awaiting_order_id = data.get("awaiting_order_id")
        self.total = Decimal(data.get("total") or "0")

    def empty(self) -> None:
        self._state()
        self._lines = []
        self.total = Decimal("0")

    def add_line(
        self,
        product_id: int,
        variation_id: int,
        quantity: int,
        custom_price: Optional[Decimal] = None,
        variation_attributes: Optional[dict[str, str]] = None,
        item_data: Optional[dict[str, str]] = None,
        bypass_availability: bool = False,
    ) -> Optional[str]:
        self._state()
        if quantity < 1:
            return None

        parent = self.catalog.get_product(product_id)
        if parent is None:
            return None

        product = parent
        if variation_id:
            product = self.catalog.get_product(variation_id)
            if product is None or product.parent_id != product_id:
                return None
        elif parent.is_variable:
            return None

        if not bypass_availability and not product.is_available:
            return None
        if not product.has_price and custom_price is None:
            return None

        attributes = dict(variation_attributes or {})
        data = dict(item_data or {})
        key = cart_line_key(product_id, variation_id, attributes, data)

        for line in self._lines:
            if line.key == key:
                line.quantity += quantity
                if custom_price is not None:
                    line.custom_price = custom_price
                return key

        self._lines.append(
            CartLine(
                key=key,
                product_id=product_id,
                variation_id=variation_id,
                quantity=quantity,
                variation_attributes=attributes,
                custom_price=custom_price,
                item_data=data,
            )
        )
        return key

    def get_lines(self) -> list[CartLine]:
        self._state()
        return list(self._lines)

    def set_lines(self, lines: list[CartLine]) -> None:
        self._state()
        self._lines = list(lines)

    def remove_line(self, key: str) -> None:
        self._state()
        self._lines = [line for line in self._lines if line.key != key]

    def _unit_price(self, line: CartLine) -> Decimal:
        if line.custom_price is not None:
            return line.custom_price
        product = self.catalog.get_product(line.variation_id or line.product_id)
        if product is None or product.price is None:
            return Decimal("0")
        return product.price

    def recompute_totals(self) -> None:
        self._state()
        total = Decimal("0")
        for line in self._lines:
            line.line_subtotal = self._unit_price(line) * line.quantity
            line.line_total = line.line_subtotal
            total += line.line_total + line.line_tax
        self.total = total

    def get_line_count(self) -> int:
        self._state()
        return sum(line.quantity for line in self._lines)

    def compute_hash(self) -> str:
        self._state()
        payload = json.dumps(
            [[line.key, line.quantity, str(line.line_total)] for line in self._lines] + [str(self.total)],
            separators=(",", ":"),
        )
        return hashlib.md5(payload.encode("utf-8")).hexdigest()

    def get_awaiting_order_id(self) -> Optional[int]:
        self._state()
        return self._awaiting_order_id

    def set_awaiting_order_id(self, order_id: Optional[int]) -> None:
        self._state()
        self._awaiting_order_id = order_id

    def persist(self) -> None:
        self._state()
        self.store.set(
            self._loaded_key,
            {
                "lines": [line.to_dict() for line in self._lines],
                "awaiting_order_id": self._awaiting_order_id,
                "total": str(self.total),
            },
            self.ttl_seconds,
        )
        logger.debug("cart_persisted", key=self._loaded_key, line_count=len(self._lines))
