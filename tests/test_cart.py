"""Unit tests for the in-memory cart."""

from __future__ import annotations

from dataclasses import FrozenInstanceError, replace
from decimal import Decimal

import pytest

from pos_terminal.cart import Cart, CartIndexError, CartLine

from conftest import make_item


@pytest.fixture
def bread():
    return make_item(1, "Bread", 10, 5)


@pytest.fixture
def milk():
    return make_item(2, "Milk", "15.25", 3)


def test_new_cart_is_empty():
    cart = Cart()

    assert cart.is_empty()
    assert len(cart) == 0
    assert cart.lines() == ()
    assert cart.total() == Decimal("0")


def test_add_or_merge_appends_new_lines_in_order(bread, milk):
    cart = Cart()

    cart.add_or_merge(bread, 2)
    cart.add_or_merge(milk, 1)

    assert [line.item.item_id for line in cart.lines()] == [1, 2]
    assert [line.quantity for line in cart] == [2, 1]


def test_add_or_merge_same_item_sums_quantities(bread):
    """Adding the same id twice should leave exactly one line with q1 + q2."""

    cart = Cart()

    first = cart.add_or_merge(bread, 2)
    second = cart.add_or_merge(bread, 3)

    assert first.quantity == 2
    assert second.quantity == 5
    assert len(cart) == 1
    assert cart.lines()[0] == second


def test_add_or_merge_keeps_original_snapshot(bread):
    """A merged line keeps the snapshot captured when it was first added."""

    cart = Cart()
    cart.add_or_merge(bread, 1)

    cart.add_or_merge(replace(bread, price=Decimal("99"), stock=0), 1)

    line = cart.find(1)
    assert line is not None
    assert line.item.price == Decimal("10")
    assert line.quantity == 2


@pytest.mark.parametrize("quantity", [0, -1])
def test_add_or_merge_rejects_non_positive_quantity(bread, quantity):
    cart = Cart()

    with pytest.raises(ValueError):
        cart.add_or_merge(bread, quantity)
    assert cart.is_empty()


def test_remove_at_returns_removed_line(bread, milk):
    cart = Cart()
    cart.add_or_merge(bread, 2)
    cart.add_or_merge(milk, 1)

    removed = cart.remove_at(0)

    assert removed == CartLine(item=bread, quantity=2)
    assert [line.item.item_id for line in cart] == [2]


@pytest.mark.parametrize("index", [-1, 2, 10])
def test_remove_at_out_of_range_leaves_cart_unchanged(bread, milk, index):
    cart = Cart()
    cart.add_or_merge(bread, 2)
    cart.add_or_merge(milk, 1)
    before = cart.lines()

    with pytest.raises(IndexError):
        cart.remove_at(index)

    assert cart.lines() == before


def test_remove_at_on_empty_cart_raises_cart_index_error():
    with pytest.raises(CartIndexError):
        Cart().remove_at(0)


def test_total_sums_line_subtotals(bread, milk):
    cart = Cart()
    cart.add_or_merge(bread, 3)
    cart.add_or_merge(milk, 2)

    expected = sum((line.item.price * line.quantity for line in cart.lines()), Decimal("0"))
    assert cart.total() == expected == Decimal("60.50")


def test_lines_returns_a_snapshot_of_the_sequence(bread):
    cart = Cart()
    cart.add_or_merge(bread, 1)

    view = cart.lines()
    cart.remove_at(0)

    assert len(view) == 1
    assert cart.is_empty()


def test_find_returns_none_for_missing_item(bread):
    cart = Cart()
    cart.add_or_merge(bread, 1)

    assert cart.find(42) is None


def test_lines_cannot_be_modified_through_the_view(bread):
    cart = Cart()
    cart.add_or_merge(bread, 2)

    with pytest.raises(FrozenInstanceError):
        cart.lines()[0].quantity = 0

    assert cart.lines()[0].quantity == 2
    assert cart.total() == Decimal("20")
