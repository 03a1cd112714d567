"""Paper execution engine: simulated spot orders against in-memory balances."""

from __future__ import annotations

import itertools
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.core.utils import base_asset, utc_now
from src.exchange.errors import OrderRejected
from src.exchange.models import Fill, OrderResult, OrderSide, OrderType
from src.exchange.symbol_rules import SymbolRules


@dataclass
class SimulatedOrder:
    """A single simulated order. `amount` is quote currency for buys, base quantity for sells."""

    symbol: str
    side: OrderSide
    order_type: OrderType
    amount: float
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol.upper(),
            "side": self.side.value,
            "order_type": self.order_type.value,
            "amount": float(self.amount),
            "timestamp": self.timestamp.isoformat(),
        }


class PaperTradingEngine:
    """Fills market orders at the current ticker plus half-spread and slippage.

    Buy fees are charged in the base asset (the exchange convention the ledger's fee
    haircut mirrors); sell fees are charged in the quote currency.
    """

    def __init__(
        self,
        *,
        market_data: Any,
        initial_quote_balance: float = 1_000.0,
        quote_asset: str = "EUR",
        fee_rate: float = 0.001,
        slippage: float = 0.0005,
        spread_bps: float = 5.0,
    ) -> None:
        if initial_quote_balance < 0:
            raise ValueError("initial_quote_balance must be >= 0.")
        self.market_data = market_data
        self.quote_asset = quote_asset.upper()
        self.fee_rate = float(fee_rate)
        self.slippage = float(slippage)
        self.spread_bps = float(spread_bps)
        self.balances: Dict[str, float] = {self.quote_asset: float(initial_quote_balance)}
        self.symbol_rules: Dict[str, SymbolRules] = {}
        self.trade_history: List[Dict[str, Any]] = []
        self._fills: Dict[str, Fill] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def set_symbol_rules(self, symbol: str, rules: Optional[SymbolRules]) -> None:
        sym = str(symbol or "").upper()
        if not sym:
            return
        if rules is None:
            self.symbol_rules.pop(sym, None)
            return
        self.symbol_rules[sym] = rules

    @staticmethod
    def _apply_lot_step(quantity: float, lot_size: float) -> float:
        qty = float(quantity or 0.0)
        step = float(lot_size or 0.0)
        if qty <= 0 or step <= 0:
            return qty
        return float(math.floor((qty + 1e-12) / step) * step)

    def _execution_price(self, mid: float, side: OrderSide) -> float:
        adjustment = self.spread_bps / 20_000.0 + self.slippage
        if side is OrderSide.BUY:
            return mid * (1.0 + adjustment)
        return mid * (1.0 - adjustment)

    # ------------------------------------------------------------------ #
    # Execution collaborator interface
    # ------------------------------------------------------------------ #
    def place_order(self, symbol: str, side: Any, order_type: Any, amount: float) -> OrderResult:
        try:
            order = SimulatedOrder(
                symbol=str(symbol).upper(),
                side=OrderSide(str(getattr(side, "value", side)).lower()),
                order_type=OrderType(str(getattr(order_type, "value", order_type)).lower()),
                amount=float(amount),
            )
        except ValueError as exc:
            return OrderResult.failed(str(exc))
        try:
            fill = self.submit_order(order)
        except OrderRejected as exc:
            logging.warning("Paper order rejected for %s: %s", order.symbol, exc)
            return OrderResult.failed(str(exc))
        return OrderResult(success=True, order_id=fill.order_id)

    def get_order_fill(self, order_id: str) -> Optional[float]:
        with self._lock:
            fill = self._fills.get(str(order_id))
        return fill.price if fill is not None else None

    def get_available_balance(self, asset: str) -> float:
        with self._lock:
            return float(self.balances.get(str(asset).upper(), 0.0))

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def submit_order(self, order: SimulatedOrder) -> Fill:
        if order.order_type is not OrderType.MARKET:
            raise OrderRejected("unsupported_order_type", {"order_type": order.order_type.value})
        if order.amount <= 0:
            raise OrderRejected("non_positive_amount", {"amount": order.amount, "symbol": order.symbol})
        mid = float(self.market_data.get_ticker(order.symbol))
        if mid <= 0:
            raise OrderRejected("no_price", {"symbol": order.symbol})
        price = self._execution_price(mid, order.side)
        rules = self.symbol_rules.get(order.symbol)
        asset = base_asset(order.symbol)

        with self._lock:
            if order.side is OrderSide.BUY:
                quantity = self._apply_lot_step(order.amount / price, rules.lot_size if rules else 0.0)
                self._check_min_size(order.symbol, quantity, rules)
                cost = quantity * price
                cash = self.balances.get(self.quote_asset, 0.0)
                if cost > cash + 1e-9:
                    raise OrderRejected("insufficient_quote", {"need": cost, "available": cash, "symbol": order.symbol})
                fee = quantity * self.fee_rate
                self.balances[self.quote_asset] = cash - cost
                self.balances[asset] = self.balances.get(asset, 0.0) + quantity - fee
                quote_amount = cost
            else:
                quantity = self._apply_lot_step(order.amount, rules.lot_size if rules else 0.0)
                self._check_min_size(order.symbol, quantity, rules)
                held = self.balances.get(asset, 0.0)
                if quantity > held + 1e-12:
                    raise OrderRejected("insufficient_base", {"need": quantity, "available": held, "symbol": order.symbol})
                gross = quantity * price
                fee = gross * self.fee_rate
                self.balances[asset] = max(0.0, held - quantity)
                self.balances[self.quote_asset] = self.balances.get(self.quote_asset, 0.0) + gross - fee
                quote_amount = gross

            order_id = f"paper-{next(self._ids)}"
            fill = Fill(
                order_id=order_id,
                symbol=order.symbol,
                side=order.side,
                price=price,
                quantity=quantity,
                quote_amount=quote_amount,
                fee=fee,
            )
            self._fills[order_id] = fill
            record = order.to_dict()
            record.update({"order_id": order_id, "price": price, "quantity": quantity, "fee": fee})
            self.trade_history.append(record)

        logging.info(
            "Paper %s %s: qty %.8f at %.6f (quote %.2f, fee %.8f)",
            order.side.value.upper(),
            order.symbol,
            quantity,
            price,
            quote_amount,
            fee,
        )
        return fill

    @staticmethod
    def _check_min_size(symbol: str, quantity: float, rules: Optional[SymbolRules]) -> None:
        if quantity <= 0:
            raise OrderRejected("zero_quantity", {"symbol": symbol})
        if rules is not None and rules.min_size > 0 and quantity < rules.min_size:
            raise OrderRejected("min_size", {"quantity": quantity, "min_size": rules.min_size, "symbol": symbol})

    def get_portfolio_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            balances = {asset: amount for asset, amount in self.balances.items() if amount > 0}
            trades = len(self.trade_history)
        return {"balances": balances, "trades_executed": trades}
