"""Plain value types shared by the execution collaborators and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


@dataclass(frozen=True)
class OrderResult:
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "OrderResult":
        return cls(success=False, order_id=None, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "order_id": self.order_id, "error": self.error}


@dataclass(frozen=True)
class Fill:
    """Execution details of a filled order."""

    order_id: str
    symbol: str
    side: OrderSide
    price: float
    quantity: float
    quote_amount: float
    fee: float
