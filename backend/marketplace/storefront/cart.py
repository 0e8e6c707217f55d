from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class CartLine:
    product_id: str
    seller_store_id: str
    unit_price: Decimal
    quantity: int = 1
    product_name: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class Cart:
    """The buyer's basket. Only the checkout orchestrator empties it, on success."""

    def __init__(self) -> None:
        # One line per product and seller store
        self._lines: Dict[Tuple[str, str], CartLine] = {}

    def add(
        self,
        product_id: str,
        seller_store_id: str,
        unit_price: Decimal,
        quantity: int = 1,
        product_name: Optional[str] = None,
    ) -> CartLine:
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        key = (product_id, seller_store_id)
        line = self._lines.get(key)
        if line is None:
            line = CartLine(product_id, seller_store_id, Decimal(unit_price), 0, product_name)
            self._lines[key] = line
        line.quantity += quantity
        return line

    def set_quantity(self, product_id: str, seller_store_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(product_id, seller_store_id)
            return
        self._lines[(product_id, seller_store_id)].quantity = quantity

    def remove(self, product_id: str, seller_store_id: str) -> None:
        self._lines.pop((product_id, seller_store_id), None)

    def clear(self) -> None:
        self._lines.clear()

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal("0.00"))

    def to_order_items(self) -> List[Dict[str, Any]]:
        return [
            {
                "product_id": line.product_id,
                "seller_store_id": line.seller_store_id,
                "product_name": line.product_name,
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
            }
            for line in self._lines.values()
        ]
