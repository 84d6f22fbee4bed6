from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterator, Tuple

from db.models import CartItem, Product
from utils.errors import NotFoundError, ValidationError


@dataclass(frozen=True)
class Totals:
    amount_payable: Decimal
    total_savings: Decimal


class Cart:
    """
    Scanned products merged into one line per product id.

    Lines never sit at quantity 0: adjusting down to 0 removes the line.
    Totals are computed from the lines on every call.
    """

    def __init__(self) -> None:
        self._lines: Dict[str, CartItem] = {}

    def add(self, product: Product, qty: int = 1) -> CartItem:
        if not isinstance(qty, int) or isinstance(qty, bool) or qty < 1:
            raise ValidationError(f"quantity must be at least 1, got {qty!r}")
        existing = self._lines.get(product.id)
        new_qty = qty if existing is None else existing.quantity + qty
        line = CartItem(product=product, quantity=new_qty)
        self._lines[product.id] = line
        return line

    def adjust(self, product_id: str, delta: int) -> int:
        """Change a line's quantity by delta; returns the new quantity (0 = removed)."""
        existing = self._lines.get(product_id)
        if existing is None:
            raise NotFoundError(f"product {product_id} is not in the cart")
        new_qty = max(0, existing.quantity + delta)
        if new_qty == 0:
            del self._lines[product_id]
        else:
            self._lines[product_id] = CartItem(product=existing.product, quantity=new_qty)
        return new_qty

    def totals(self) -> Totals:
        payable = sum((line.line_total for line in self._lines.values()), Decimal("0"))
        savings = sum((line.line_savings for line in self._lines.values()), Decimal("0"))
        return Totals(amount_payable=payable, total_savings=savings)

    def items(self) -> Tuple[CartItem, ...]:
        return tuple(self._lines.values())

    def quantity_of(self, product_id: str) -> int:
        line = self._lines.get(product_id)
        return line.quantity if line else 0

    def clear(self) -> None:
        self._lines.clear()

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._lines

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items())
