"""Duplicate-order guard for checkouts made inside an impersonated session.

Exactly one order survives impersonation: checkout is forced onto the
original order, and a later validation checkpoint aborts the checkout if
the pipeline is about to finalize anything else.
"""

from typing import NoReturn, Optional

import structlog

from guest_payment.domain.context import RequestContext, SharedContext
from guest_payment.domain.exceptions import CheckoutBlockedError
from guest_payment.domain.messages import DUPLICATE_ORDER_NOTICE
from guest_payment.domain.models import USER_META_ORIGINAL_ORDER_ID, Order

logger = structlog.get_logger(__name__)

SESSION_ERROR = "guest_payment_session_error"
ORDER_MISMATCH = "guest_payment_order_mismatch"
ORDER_STATUS = "guest_payment_order_status"


class DuplicateOrderGuard:
    """Forces reuse of the original order and hard-stops forked checkouts."""

    def __init__(self, shared: SharedContext):
        self.shared = shared

    def _is_active(self, ctx: RequestContext) -> bool:
        return ctx.has_cookie(self.shared.settings.session_marker_cookie)

    def original_order_id(self, user_id: int) -> Optional[int]:
        value = self.shared.users.get_meta(user_id, USER_META_ORIGINAL_ORDER_ID)
        if value and value.isdigit() and int(value) > 0:
            return int(value)
        return None

    def resolve_order(self, ctx: RequestContext, proposed_order_id: Optional[int]) -> Optional[int]:
        """Return the order id checkout must use.

        Safe to call repeatedly: reuse is idempotent.
        """
        if not self._is_active(ctx):
            return proposed_order_id

        user_id = ctx.current_user_id()
        original_id = self.original_order_id(user_id) if user_id else None
        if not original_id:
            return proposed_order_id

        order = self.shared.orders.get(original_id)
        if order is None or not order.has_allowed_status(self.shared.settings):
            logger.warning(
                "checkout_reuse_skipped",
                original_order_id=original_id,
                status=order.status if order else None,
            )
            return proposed_order_id

        live_hash = ctx.cart.compute_hash()
        if order.cart_hash != live_hash:
            order.cart_hash = live_hash
            self.shared.orders.save(order)

        if proposed_order_id != original_id:
            logger.info(
                "checkout_order_reused",
                original_order_id=original_id,
                proposed_order_id=proposed_order_id,
            )
        return original_id

    def validate_checkout(self, ctx: RequestContext) -> None:
        """Classic checkout checkpoint: compare the in-flight order marker.

        Raises:
            CheckoutBlockedError: If the in-flight order is not the original
        """
        if not self._is_active(ctx):
            return

        expected = self._expected_order(ctx)
        in_flight = ctx.cart.get_awaiting_order_id()
        if in_flight != expected.id:
            self._block(ctx, ORDER_MISMATCH, expected_order_id=expected.id, order_id=in_flight)

    def validate_order(self, ctx: RequestContext, order_id: int) -> None:
        """API-style checkpoint: the order about to be finalized must be the original.

        Raises:
            CheckoutBlockedError: If ``order_id`` is not the original order
        """
        if not self._is_active(ctx):
            return

        expected = self._expected_order(ctx)
        if order_id != expected.id:
            self._block(ctx, ORDER_MISMATCH, expected_order_id=expected.id, order_id=order_id)

    def _expected_order(self, ctx: RequestContext) -> Order:
        user_id = ctx.current_user_id()
        original_id = self.original_order_id(user_id) if user_id else None
        if not original_id:
            self._block(ctx, SESSION_ERROR, user_id=user_id)

        order = self.shared.orders.get(original_id)
        if order is None:
            self._block(ctx, SESSION_ERROR, expected_order_id=original_id)
        if not order.has_allowed_status(self.shared.settings):
            self._block(ctx, ORDER_STATUS, expected_order_id=original_id, status=order.status)
        return order

    def _block(self, ctx: RequestContext, code: str, **details) -> NoReturn:
        ctx.cart.empty()
        ctx.cart.set_awaiting_order_id(None)
        ctx.cart.persist()
        ctx.add_notice(DUPLICATE_ORDER_NOTICE)
        logger.warning("checkout_blocked", code=code, **details)
        raise CheckoutBlockedError(code, DUPLICATE_ORDER_NOTICE)
