"""In-memory cart built during one transaction session.

The cart only tracks item snapshots and quantities. Stock checks and catalog
restitution are the transaction engine's job.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Iterator, List, Optional, Tuple

from .data_manager import CartLine, Item


class CartIndexError(IndexError):
    """Raised when a cart line reference falls outside the cart."""


class Cart:
    """Insertion-ordered collection of :class:`CartLine` objects.

    Lines are keyed by item id: adding an item that is already present merges
    into the existing line instead of creating a duplicate.
    """

    def __init__(self) -> None:
        self._lines: List[CartLine] = []

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self.lines())

    def is_empty(self) -> bool:
        return not self._lines

    def find(self, item_id: int) -> Optional[CartLine]:
        """Return the line holding ``item_id`` or ``None``."""
        for line in self._lines:
            if line.item.item_id == item_id:
                return line
        return None

    def add_or_merge(self, item_snapshot: Item, quantity: int) -> CartLine:
        """Add ``quantity`` units of ``item_snapshot`` and return the affected line.

        An existing line for the same id is replaced by a copy that keeps the
        original snapshot with the summed quantity.

        Raises:
            ValueError: If ``quantity`` is lower than one.
        """
        if quantity < 1:
            raise ValueError("Cart quantity must be at least 1")

        for position, line in enumerate(self._lines):
            if line.item.item_id == item_snapshot.item_id:
                merged = replace(line, quantity=line.quantity + quantity)
                self._lines[position] = merged
                return merged

        line = CartLine(item=item_snapshot, quantity=quantity)
        self._lines.append(line)
        return line

    def remove_at(self, index: int) -> CartLine:
        """Remove and return the line at the 0-based ``index``.

        Raises:
            CartIndexError: If ``index`` is outside ``[0, len(cart))``. The cart
                is left untouched.
        """
        if not 0 <= index < len(self._lines):
            raise CartIndexError(
                f"Cart line {index} out of range (cart has {len(self._lines)} lines)"
            )
        return self._lines.pop(index)

    def lines(self) -> Tuple[CartLine, ...]:
        """Lines in insertion order. The lines themselves are frozen."""
        return tuple(self._lines)

    def total(self) -> Decimal:
        return sum((line.subtotal for line in self._lines), Decimal("0"))


__all__ = ["Cart", "CartIndexError", "CartLine"]
