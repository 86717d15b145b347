"""Cart reconstruction from historical order lines, and the cart guard.

Reconstruction prices lines from what the order actually owes: when the
catalog price is blank or zero, the line carries a custom unit price
derived from the order line total.
"""

import secrets
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog

from guest_payment.domain.context import Notice
from guest_payment.domain.interfaces import ICartSession, ICatalog
from guest_payment.domain.messages import (
    EMPTY_ORDER_NOTICE,
    ITEM_FAILED_NOTICE,
    ITEM_NEEDS_OPTION_NOTICE,
    ITEM_UNAVAILABLE_NOTICE,
    NO_AVAILABLE_ITEMS_NOTICE,
    UNAVAILABLE_ITEMS_NOTICE,
)
from guest_payment.domain.models import CartLine, Order, OrderLineItem, Product

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def unit_price(total: Decimal, quantity: int) -> Decimal:
    """Per-unit price owed for an order line."""
    return (Decimal(total) / max(quantity, 1)).quantize(CENT, rounding=ROUND_HALF_UP)


class CartReconstructionEngine:
    """Rebuilds the live cart from an order's line items."""

    def __init__(self, catalog: ICatalog):
        self.catalog = catalog

    def rebuild(
        self,
        order: Order,
        cart: ICartSession,
        notices: list[Notice],
        bypass_availability: bool = False,
    ) -> int:
        """Replace the cart contents with the lines of ``order``.

        Lines are skipped individually (with a notice) when they cannot be
        resolved. Totals are recomputed and the session persisted once.

        Args:
            order: Order to reconstruct
            cart: Live cart of the impersonated session
            notices: Sink for user-visible notices
            bypass_availability: Add lines whose product is no longer
                purchasable or is out of stock

        Returns:
            Number of lines added; zero means reconstruction failed
        """
        cart.empty()

        if not order.items:
            logger.warning("cart_rebuild_empty_order", order_id=order.id)
            notices.append(Notice(EMPTY_ORDER_NOTICE))
            return 0

        added = 0
        for item in order.items:
            if not item.is_product_line:
                continue
            try:
                if self._add_item(order, item, cart, notices, bypass_availability):
                    added += 1
            except Exception as e:
                logger.error("cart_line_failed", order_id=order.id, item_id=item.id, error=str(e))
                notices.append(Notice(ITEM_FAILED_NOTICE))

        if added:
            cart.recompute_totals()
        else:
            notices.append(Notice(NO_AVAILABLE_ITEMS_NOTICE))
        cart.persist()

        logger.info("cart_rebuilt", order_id=order.id, added=added, line_count=cart.get_line_count())
        return added

    def _add_item(
        self,
        order: Order,
        item: OrderLineItem,
        cart: ICartSession,
        notices: list[Notice],
        bypass_availability: bool,
    ) -> bool:
        target_id = item.variation_id or item.product_id
        product = self.catalog.get_product(target_id) if target_id > 0 else None
        if product is None:
            logger.warning(
                "cart_line_skipped",
                order_id=order.id,
                item_id=item.id,
                product_id=item.product_id,
                variation_id=item.variation_id,
                reason="product_missing",
            )
            notices.append(Notice(ITEM_UNAVAILABLE_NOTICE))
            return False

        # A variable product without its variation cannot be priced or shipped
        if not item.variation_id and product.is_variable:
            logger.warning(
                "cart_line_skipped",
                order_id=order.id,
                item_id=item.id,
                product_id=item.product_id,
                reason="variation_required",
            )
            notices.append(Notice(ITEM_NEEDS_OPTION_NOTICE))
            return False

        quantity = max(item.quantity, 1)
        custom_price = None if product.has_price else unit_price(item.total, quantity)
        item_data = dict(item.meta) if self._is_subscription(product) else {}

        key = cart.add_line(
            item.product_id,
            item.variation_id,
            quantity,
            custom_price=custom_price,
            variation_attributes=dict(item.variation_attributes),
            item_data=item_data,
            bypass_availability=bypass_availability,
        )
        if key:
            return True

        return self._add_fallback_line(order, item, product, quantity, item_data, cart, notices, bypass_availability)

    def _add_fallback_line(
        self,
        order: Order,
        item: OrderLineItem,
        product: Product,
        quantity: int,
        item_data: dict[str, str],
        cart: ICartSession,
        notices: list[Notice],
        bypass_availability: bool,
    ) -> bool:
        if not bypass_availability and not product.is_available:
            logger.warning("cart_line_skipped", order_id=order.id, item_id=item.id, reason="not_available")
            notices.append(Notice(ITEM_UNAVAILABLE_NOTICE))
            return False

        line = CartLine(
            key=secrets.token_hex(16),
            product_id=item.product_id,
            variation_id=item.variation_id,
            quantity=quantity,
            variation_attributes=dict(item.variation_attributes),
            custom_price=unit_price(item.total, quantity),
            line_total=Decimal(item.total),
            line_subtotal=Decimal(item.total),
            line_tax=Decimal("0"),
            item_data=item_data,
        )
        cart.set_lines(cart.get_lines() + [line])
        logger.info("cart_line_fallback_added", order_id=order.id, item_id=item.id)
        return True

    def _is_subscription(self, product: Product) -> bool:
        if product.is_subscription:
            return True
        if product.parent_id:
            parent = self.catalog.get_product(product.parent_id)
            return parent is not None and parent.is_subscription
        return False


class CartGuard:
    """Strips cart lines whose product or required variation no longer resolves."""

    def __init__(self, catalog: ICatalog):
        self.catalog = catalog

    def _invalid_reason(self, line: CartLine) -> Optional[str]:
        if line.product_id <= 0:
            return "missing_product_id"

        parent = self.catalog.get_product(line.product_id)
        if parent is None:
            return "product_missing"

        if line.variation_id:
            if self.catalog.get_product(line.variation_id) is None:
                return "variation_missing"
        elif parent.is_variable:
            return "variation_required"

        return None

    def guard(self, cart: ICartSession, notices: list[Notice]) -> int:
        """Remove dangling lines before totals are computed.

        Returns:
            Number of lines removed
        """
        removed = 0
        for line in cart.get_lines():
            reason = self._invalid_reason(line)
            if reason is None:
                continue
            cart.remove_line(line.key)
            removed += 1
            logger.warning(
                "cart_line_removed",
                product_id=line.product_id,
                variation_id=line.variation_id,
                reason=reason,
            )

        if removed:
            notices.append(Notice(UNAVAILABLE_ITEMS_NOTICE))
        return removed
