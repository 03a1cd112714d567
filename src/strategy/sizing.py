"""Entry and average-down sizing helpers.

This module only computes quote-currency amounts; it never places orders.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.exchange.symbol_rules import SymbolRules

MIN_SIZE_BUFFER = 1.001
PRICE_BUFFER = 1.02
SMALL_ORDER_THRESHOLD = 15.0
SMALL_ORDER_MULTIPLIER = 10.0
MIN_POSITION_VALUE = 10.02


@dataclass(frozen=True)
class EntrySize:
    amount: float
    base_quantity: float
    scaled_up: bool


def size_new_position(
    rules: Optional[SymbolRules],
    price: float,
    min_position_value: float = MIN_POSITION_VALUE,
    *,
    small_order_threshold: float = SMALL_ORDER_THRESHOLD,
    small_order_multiplier: float = SMALL_ORDER_MULTIPLIER,
) -> Optional[EntrySize]:
    """Quote amount for a fresh entry, derived from the exchange's minimum order size.

    The minimum size gets a small buffer; tiny orders are scaled up by
    `small_order_multiplier` and never go below `min_position_value`.
    """
    price = float(price)
    if rules is None or price <= 0 or rules.min_size <= 0:
        return None
    base_quantity = rules.min_size * MIN_SIZE_BUFFER
    amount = base_quantity * price * PRICE_BUFFER
    scaled = False
    if amount <= small_order_threshold:
        amount *= small_order_multiplier
        scaled = True
        if amount < float(min_position_value):
            amount = float(min_position_value)
    return EntrySize(amount=round(amount, 8), base_quantity=base_quantity, scaled_up=scaled)


def size_average_down(total_invested: float, average_down_count: int) -> float:
    """Repeat the original per-fill amount: total invested spread over fills so far."""
    total_invested = float(total_invested)
    if total_invested <= 0:
        return 0.0
    return total_invested / (int(average_down_count) + 1)
