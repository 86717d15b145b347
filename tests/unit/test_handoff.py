"""Unit tests for the secure cart handoff."""

import re

import pytest

from guest_payment.domain.handoff import CART_PREFIX, MAP_PREFIX, CartHandoffStore, generate_handoff_key
from guest_payment.domain.models import CartLine
from guest_payment.infrastructure.repository import KeyValueRepository


@pytest.fixture
def clock():
    now = {"value": 1_700_000_000}
    return now


@pytest.fixture
def handoffs(db_session, clock) -> CartHandoffStore:
    store = KeyValueRepository(db_session, clock=lambda: clock["value"])
    return CartHandoffStore(store, ttl_seconds=3600)


def lines() -> list[CartLine]:
    return [
        CartLine(key="a", product_id=21, quantity=2),
        CartLine(key="b", product_id=30, variation_id=31, variation_attributes={"color": "blue"}),
    ]


def test_generated_keys_are_alphanumeric():
    key = generate_handoff_key()

    assert re.fullmatch(r"[A-Za-z0-9]{24}", key)
    assert generate_handoff_key() != key


def test_create_maps_key_to_owner(handoffs):
    key = handoffs.create(10, lines())

    assert handoffs.get_owner(key) == 10


def test_consume_returns_lines_and_deletes(handoffs):
    key = handoffs.create(10, lines())

    owner_id, restored = handoffs.consume(key)

    assert owner_id == 10
    assert [line.key for line in restored] == ["a", "b"]
    assert restored[1].variation_attributes == {"color": "blue"}
    assert handoffs.get_owner(key) is None
    assert handoffs.consume(key) is None


@pytest.mark.parametrize("key", ["", "unknownkey123", "bad-key!", "../gp_map_x"])
def test_consume_unknown_or_malformed_key(handoffs, key):
    assert handoffs.consume(key) is None


def test_handoff_expires(handoffs, clock):
    key = handoffs.create(10, lines())

    clock["value"] += 3600

    assert handoffs.get_owner(key) is None
    assert handoffs.consume(key) is None


def test_sweep_owner_removes_only_that_owner(handoffs):
    first = handoffs.create(10, [])
    second = handoffs.create(10, lines())
    other = handoffs.create(11, lines())

    assert handoffs.sweep_owner(10) == 2

    assert handoffs.get_owner(first) is None
    assert handoffs.get_owner(second) is None
    assert handoffs.get_owner(other) == 11
    assert handoffs.store.get(CART_PREFIX + second) is None


def test_sweep_owner_without_handoffs(handoffs):
    assert handoffs.sweep_owner(10) == 0


def test_store_layout(handoffs):
    key = handoffs.create(10, lines())

    assert handoffs.store.get(MAP_PREFIX + key) == 10
    assert handoffs.store.get(CART_PREFIX + key)["owner_id"] == 10
