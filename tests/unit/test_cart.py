"""Unit tests for cart reconstruction and the cart guard."""

from decimal import Decimal

import pytest

from guest_payment.domain.cart import CartGuard, CartReconstructionEngine, unit_price
from guest_payment.domain.context import Notice
from guest_payment.domain.messages import (
    EMPTY_ORDER_NOTICE,
    ITEM_NEEDS_OPTION_NOTICE,
    ITEM_UNAVAILABLE_NOTICE,
    NO_AVAILABLE_ITEMS_NOTICE,
    UNAVAILABLE_ITEMS_NOTICE,
)
from guest_payment.domain.models import CartLine, Order, OrderLineItem, Product
from tests.conftest import (
    CUSTOMER_ID,
    FREE_PRODUCT_ID,
    SIMPLE_PRODUCT_ID,
    VARIABLE_PRODUCT_ID,
    VARIATION_ID,
)


@pytest.fixture
def engine(shared) -> CartReconstructionEngine:
    return CartReconstructionEngine(shared.catalog)


@pytest.fixture
def cart(make_ctx):
    return make_ctx(user_id=CUSTOMER_ID).cart


def messages(notices: list[Notice]) -> list[str]:
    return [notice.message for notice in notices]


class TestUnitPrice:
    def test_unit_price_divides_total(self):
        assert unit_price(Decimal("30.00"), 2) == Decimal("15.00")

    def test_unit_price_rounds_half_up(self):
        assert unit_price(Decimal("10.00"), 3) == Decimal("3.33")
        assert unit_price(Decimal("0.05"), 2) == Decimal("0.03")

    def test_unit_price_guards_zero_quantity(self):
        assert unit_price(Decimal("12.50"), 0) == Decimal("12.50")


class TestCartReconstruction:
    """Tests for rebuilding the cart from an order's lines."""

    def test_rebuild_full_order(self, engine, cart, seeded):
        notices: list[Notice] = []

        added = engine.rebuild(seeded, cart, notices)

        assert added == 3
        assert notices == []
        assert cart.get_line_count() == 4
        assert cart.total == Decimal("62.50")

    def test_blank_catalog_price_uses_order_total(self, engine, cart, seeded):
        engine.rebuild(seeded, cart, [])

        line = next(line for line in cart.get_lines() if line.product_id == FREE_PRODUCT_ID)
        assert line.custom_price == Decimal("12.50")
        assert line.line_total == Decimal("12.50")

    def test_priced_product_keeps_catalog_price(self, engine, cart, seeded):
        engine.rebuild(seeded, cart, [])

        line = next(line for line in cart.get_lines() if line.product_id == SIMPLE_PRODUCT_ID)
        assert line.custom_price is None
        assert line.line_total == Decimal("30.00")

    def test_variation_attributes_are_preserved(self, engine, cart, seeded):
        engine.rebuild(seeded, cart, [])

        line = next(line for line in cart.get_lines() if line.variation_id == VARIATION_ID)
        assert line.product_id == VARIABLE_PRODUCT_ID
        assert line.variation_attributes == {"color": "blue"}

    def test_rebuild_replaces_existing_contents(self, engine, cart, seeded):
        cart.add_line(SIMPLE_PRODUCT_ID, 0, 5)

        engine.rebuild(seeded, cart, [])

        assert cart.get_line_count() == 4

    def test_missing_product_is_skipped(self, engine, cart, shared, seeded):
        shared.catalog.trash(SIMPLE_PRODUCT_ID)
        notices: list[Notice] = []

        added = engine.rebuild(seeded, cart, notices)

        assert added == 2
        assert messages(notices) == [ITEM_UNAVAILABLE_NOTICE]
        assert all(line.product_id != SIMPLE_PRODUCT_ID for line in cart.get_lines())

    def test_variable_product_without_variation_is_skipped(self, engine, cart, seeded):
        order = Order(
            id=1,
            items=[OrderLineItem(id=1, product_id=VARIABLE_PRODUCT_ID, total=Decimal("20.00"))],
        )
        notices: list[Notice] = []

        added = engine.rebuild(order, cart, notices)

        assert added == 0
        assert messages(notices) == [ITEM_NEEDS_OPTION_NOTICE, NO_AVAILABLE_ITEMS_NOTICE]

    def test_empty_order(self, engine, cart, seeded):
        notices: list[Notice] = []

        added = engine.rebuild(Order(id=1), cart, notices)

        assert added == 0
        assert messages(notices) == [EMPTY_ORDER_NOTICE]

    def test_non_product_lines_are_ignored(self, engine, cart, seeded):
        order = Order(id=1, items=[OrderLineItem(id=1, item_type="fee", name="Handling", total=Decimal("2.00"))])
        notices: list[Notice] = []

        assert engine.rebuild(order, cart, notices) == 0
        assert messages(notices) == [NO_AVAILABLE_ITEMS_NOTICE]

    def test_subscription_item_meta_is_copied(self, engine, cart, shared, seeded):
        shared.catalog.add(Product(id=40, product_type="subscription", price=Decimal("9.99"), name="Coffee club"))
        order = Order(
            id=1,
            items=[
                OrderLineItem(
                    id=1,
                    product_id=40,
                    total=Decimal("9.99"),
                    meta={"_billing_period": "month", "_billing_interval": "1"},
                )
            ],
        )

        engine.rebuild(order, cart, [])

        (line,) = cart.get_lines()
        assert line.item_data == {"_billing_period": "month", "_billing_interval": "1"}

    def test_regular_item_meta_is_not_copied(self, engine, cart, seeded):
        order = Order(
            id=1,
            items=[OrderLineItem(id=1, product_id=SIMPLE_PRODUCT_ID, total=Decimal("15.00"), meta={"_gift": "yes"})],
        )

        engine.rebuild(order, cart, [])

        (line,) = cart.get_lines()
        assert line.item_data == {}

    def test_rejected_line_falls_back_to_direct_insert(self, engine, cart, seeded):
        """Test that a resolvable line the cart refuses is inserted directly at the owed price."""
        # The variation does not belong to this parent, so the normal add path refuses it
        order = Order(
            id=1,
            items=[
                OrderLineItem(
                    id=1,
                    product_id=SIMPLE_PRODUCT_ID,
                    variation_id=VARIATION_ID,
                    quantity=3,
                    total=Decimal("10.00"),
                )
            ],
        )

        added = engine.rebuild(order, cart, [])

        assert added == 1
        (line,) = cart.get_lines()
        assert line.custom_price == Decimal("3.33")
        assert line.line_tax == Decimal("0")
        assert cart.total == Decimal("9.99")

    @pytest.mark.parametrize(
        "product",
        [
            Product(id=50, price=Decimal("5.00"), purchasable=False, name="Retired"),
            Product(id=50, price=Decimal("5.00"), in_stock=False, name="Sold out"),
        ],
    )
    def test_unavailable_product_is_skipped_by_default(self, engine, cart, shared, seeded, product):
        shared.catalog.add(product)
        order = Order(id=1, items=[OrderLineItem(id=1, product_id=50, total=Decimal("5.00"))])
        notices: list[Notice] = []

        assert engine.rebuild(order, cart, notices) == 0
        assert messages(notices) == [ITEM_UNAVAILABLE_NOTICE, NO_AVAILABLE_ITEMS_NOTICE]

    @pytest.mark.parametrize(
        "product",
        [
            Product(id=50, price=Decimal("5.00"), purchasable=False, name="Retired"),
            Product(id=50, price=Decimal("5.00"), in_stock=False, name="Sold out"),
            Product(id=50, price=None, purchasable=False, in_stock=False, name="Retired engraving"),
        ],
    )
    def test_owed_order_bypasses_availability(self, engine, cart, shared, seeded, product):
        shared.catalog.add(product)
        order = Order(id=1, items=[OrderLineItem(id=1, product_id=50, quantity=2, total=Decimal("10.00"))])
        notices: list[Notice] = []

        assert engine.rebuild(order, cart, notices, bypass_availability=True) == 1
        assert notices == []
        (line,) = cart.get_lines()
        assert line.product_id == 50
        assert line.quantity == 2
        assert cart.total == Decimal("10.00")

    def test_unavailable_variation_is_added_when_bypassed(self, engine, cart, shared, seeded):
        shared.catalog.add(
            Product(
                id=51,
                product_type="variation",
                parent_id=VARIABLE_PRODUCT_ID,
                price=Decimal("7.50"),
                in_stock=False,
            )
        )
        order = Order(
            id=1,
            items=[OrderLineItem(id=1, product_id=VARIABLE_PRODUCT_ID, variation_id=51, total=Decimal("7.50"))],
        )

        assert engine.rebuild(order, cart, [], bypass_availability=True) == 1
        assert cart.get_lines()[0].variation_id == 51

    def test_rebuild_persists_cart(self, engine, make_ctx, seeded):
        engine.rebuild(seeded, make_ctx(user_id=CUSTOMER_ID).cart, [])

        reloaded = make_ctx(user_id=CUSTOMER_ID).cart
        assert reloaded.get_line_count() == 4


class TestCartGuard:
    """Tests for stripping dangling cart lines."""

    @pytest.fixture
    def guard(self, shared) -> CartGuard:
        return CartGuard(shared.catalog)

    def test_valid_cart_is_untouched(self, guard, engine, cart, seeded):
        engine.rebuild(seeded, cart, [])
        notices: list[Notice] = []

        assert guard.guard(cart, notices) == 0
        assert notices == []
        assert cart.get_line_count() == 4

    def test_dangling_lines_are_removed_with_one_notice(self, guard, engine, cart, shared, seeded):
        engine.rebuild(seeded, cart, [])
        shared.catalog.trash(SIMPLE_PRODUCT_ID)
        shared.catalog.trash(VARIATION_ID)
        notices: list[Notice] = []

        removed = guard.guard(cart, notices)

        assert removed == 2
        assert messages(notices) == [UNAVAILABLE_ITEMS_NOTICE]
        assert [line.product_id for line in cart.get_lines()] == [FREE_PRODUCT_ID]

    def test_variable_parent_without_variation_is_removed(self, guard, cart, seeded):
        cart.set_lines(
            [
                CartLine(key="a", product_id=VARIABLE_PRODUCT_ID),
                CartLine(key="b", product_id=0),
                CartLine(key="c", product_id=SIMPLE_PRODUCT_ID),
            ]
        )

        assert guard.guard(cart, []) == 2
        assert [line.key for line in cart.get_lines()] == ["c"]
