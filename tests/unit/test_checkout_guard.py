"""Unit tests for the duplicate-order guard."""

import pytest

from guest_payment.domain.checkout_guard import (
    ORDER_MISMATCH,
    ORDER_STATUS,
    SESSION_ERROR,
    DuplicateOrderGuard,
)
from guest_payment.domain.context import PageKind
from guest_payment.domain.exceptions import CheckoutBlockedError
from guest_payment.domain.messages import DUPLICATE_ORDER_NOTICE
from guest_payment.domain.models import USER_META_ORIGINAL_ORDER_ID
from tests.conftest import CUSTOMER_ID, ORDER_ID, SIMPLE_PRODUCT_ID


@pytest.fixture
def guard(shared) -> DuplicateOrderGuard:
    return DuplicateOrderGuard(shared)


@pytest.fixture
def session_ctx(make_ctx, shared, settings, seeded):
    """Checkout request inside an impersonated session for order #500."""
    shared.users.set_meta(CUSTOMER_ID, USER_META_ORIGINAL_ORDER_ID, str(ORDER_ID))
    ctx = make_ctx(
        page=PageKind.CHECKOUT,
        user_id=CUSTOMER_ID,
        cookies={settings.session_marker_cookie: "1"},
    )
    ctx.cart.add_line(SIMPLE_PRODUCT_ID, 0, 2)
    ctx.cart.recompute_totals()
    ctx.cart.set_awaiting_order_id(ORDER_ID)
    ctx.cart.persist()
    return ctx


class TestResolveOrder:
    def test_inactive_session_keeps_proposal(self, guard, make_ctx, seeded):
        ctx = make_ctx(page=PageKind.CHECKOUT, user_id=CUSTOMER_ID)

        assert guard.resolve_order(ctx, 777) == 777
        assert guard.resolve_order(ctx, None) is None

    def test_active_session_reuses_original(self, guard, session_ctx):
        assert guard.resolve_order(session_ctx, None) == ORDER_ID
        assert guard.resolve_order(session_ctx, 777) == ORDER_ID

    def test_reuse_is_idempotent(self, guard, session_ctx):
        first = guard.resolve_order(session_ctx, None)
        second = guard.resolve_order(session_ctx, first)

        assert first == second == ORDER_ID

    def test_reuse_refreshes_cart_hash(self, guard, session_ctx, shared):
        guard.resolve_order(session_ctx, None)

        assert shared.orders.get(ORDER_ID).cart_hash == session_ctx.cart.compute_hash()

    def test_original_in_disallowed_status_is_not_reused(self, guard, session_ctx, shared):
        shared.orders.set_status(ORDER_ID, "completed")

        assert guard.resolve_order(session_ctx, 777) == 777

    def test_missing_original_marker_keeps_proposal(self, guard, session_ctx, shared):
        shared.users.delete_meta(CUSTOMER_ID, USER_META_ORIGINAL_ORDER_ID)

        assert guard.resolve_order(session_ctx, 777) == 777


class TestValidateCheckout:
    """Tests for the checkpoints that abort forked checkouts."""

    def test_matching_in_flight_order_passes(self, guard, session_ctx):
        guard.validate_checkout(session_ctx)

    def test_inactive_session_is_not_checked(self, guard, make_ctx, seeded):
        ctx = make_ctx(page=PageKind.CHECKOUT, user_id=CUSTOMER_ID)

        guard.validate_checkout(ctx)
        guard.validate_order(ctx, 777)

    def test_mismatched_in_flight_order_is_blocked(self, guard, session_ctx):
        session_ctx.cart.set_awaiting_order_id(777)

        with pytest.raises(CheckoutBlockedError) as exc_info:
            guard.validate_checkout(session_ctx)

        assert exc_info.value.code == ORDER_MISMATCH
        assert exc_info.value.message == DUPLICATE_ORDER_NOTICE

    def test_block_empties_cart_and_clears_marker(self, guard, session_ctx):
        with pytest.raises(CheckoutBlockedError):
            guard.validate_order(session_ctx, 777)

        assert session_ctx.cart.get_line_count() == 0
        assert session_ctx.cart.get_awaiting_order_id() is None
        assert [notice.message for notice in session_ctx.notices] == [DUPLICATE_ORDER_NOTICE]

    def test_original_order_passes_api_checkpoint(self, guard, session_ctx):
        guard.validate_order(session_ctx, ORDER_ID)

    def test_missing_original_is_session_error(self, guard, session_ctx, shared):
        shared.users.delete_meta(CUSTOMER_ID, USER_META_ORIGINAL_ORDER_ID)

        with pytest.raises(CheckoutBlockedError) as exc_info:
            guard.validate_order(session_ctx, ORDER_ID)

        assert exc_info.value.code == SESSION_ERROR

    def test_unknown_original_is_session_error(self, guard, session_ctx, shared):
        shared.users.set_meta(CUSTOMER_ID, USER_META_ORIGINAL_ORDER_ID, "9999")

        with pytest.raises(CheckoutBlockedError) as exc_info:
            guard.validate_checkout(session_ctx)

        assert exc_info.value.code == SESSION_ERROR

    def test_original_in_disallowed_status_is_blocked(self, guard, session_ctx, shared):
        shared.orders.set_status(ORDER_ID, "cancelled")

        with pytest.raises(CheckoutBlockedError) as exc_info:
            guard.validate_order(session_ctx, ORDER_ID)

        assert exc_info.value.code == ORDER_STATUS


class TestPipelineCheckoutStages:
    def test_checkout_stages_route_to_guard(self, pipeline, session_ctx):
        assert pipeline.on_checkout_resolve_order(session_ctx, None) == ORDER_ID

        pipeline.on_checkout_validate(session_ctx)
        pipeline.on_checkout_validate(session_ctx, ORDER_ID)

        with pytest.raises(CheckoutBlockedError):
            pipeline.on_checkout_validate(session_ctx, 777)

    def test_cart_guard_runs_only_in_session(self, pipeline, session_ctx, make_ctx, shared):
        shared.catalog.trash(SIMPLE_PRODUCT_ID)

        outside = make_ctx(user_id=CUSTOMER_ID)
        assert pipeline.on_before_calculate_totals(outside) == 0

        assert pipeline.on_before_calculate_totals(session_ctx) == 1
        assert session_ctx.cart.get_line_count() == 0
