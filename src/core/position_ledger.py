"""Position ledger: one open position per base asset, with average-down bookkeeping.

The sell target (`high`) is fixed when a position is first filled. Averaging down
lowers the break-even price and moves the next trigger, but never moves the target.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.core.utils import ReadWriteLock, base_asset, utc_now


FEE_HAIRCUT = 0.001
SELL_TARGET_MARGIN = 0.005
AVERAGE_DOWN_STEP_PCT = 2.0
MAX_AVERAGE_DOWNS = 3
AVERAGE_DOWN_PAUSE_SECONDS = 300.0
PRICE_DECIMALS = 12


def _price_level(value: float) -> float:
    """Round a derived price so 100 * 1.005 compares as 100.5."""
    return round(value, PRICE_DECIMALS)


class PositionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class AverageDownEntry:
    timestamp: datetime
    price: float
    volume: float
    invested_amount: float
    previous_average_price: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "price": self.price,
            "volume": self.volume,
            "invested_amount": self.invested_amount,
            "previous_average_price": self.previous_average_price,
        }


@dataclass
class Position:
    """A single spot holding. Mutated only by `PositionLedger` under its write lock."""

    symbol: str
    volume: float = 0.0
    purchase_price: float = 0.0
    original_purchase_price: float = 0.0
    original_volume: float = 0.0
    total_invested: float = 0.0
    high: float = 0.0
    average_down_count: int = 0
    average_down_history: List[AverageDownEntry] = field(default_factory=list)
    next_average_down_trigger: float = 0.0
    average_down_enabled: bool = True
    last_average_down_at: Optional[float] = None
    current_market_price: float = 0.0
    state: PositionState = PositionState.UNINITIALIZED
    order_id: Optional[str] = None
    opened_at: Optional[datetime] = None

    @property
    def asset(self) -> str:
        return base_asset(self.symbol)

    def initialize(
        self,
        fill_price: float,
        fill_volume: float,
        invested_amount: float,
        *,
        step_pct: float,
        fee_haircut: float,
        sell_target_margin: float,
    ) -> None:
        if self.state is not PositionState.UNINITIALIZED:
            raise ValueError(f"Position {self.symbol} is already {self.state.value}.")
        if fill_price <= 0 or fill_volume <= 0 or invested_amount <= 0:
            raise ValueError("fill_price, fill_volume and invested_amount must be > 0.")
        stored_volume = fill_volume * (1.0 - fee_haircut)
        self.volume = stored_volume
        self.original_volume = stored_volume
        self.purchase_price = invested_amount / stored_volume
        self.original_purchase_price = self.purchase_price
        self.total_invested = invested_amount
        self.high = _price_level(fill_price * (1.0 + sell_target_margin))
        self.current_market_price = fill_price
        self.next_average_down_trigger = self.purchase_price * (1.0 - step_pct / 100.0 * (self.average_down_count + 1))
        self.opened_at = utc_now()
        self.state = PositionState.OPEN

    def should_average_down(
        self,
        current_price: float,
        *,
        now: float,
        max_average_downs: int,
        pause_seconds: float,
    ) -> bool:
        if self.state is not PositionState.OPEN:
            return False
        if not self.average_down_enabled or self.average_down_count >= max_average_downs:
            return False
        if self.last_average_down_at is not None and now - self.last_average_down_at < pause_seconds:
            logging.debug("Average-down for %s paused (%.0fs since last).", self.symbol, now - self.last_average_down_at)
            return False
        return current_price <= self.next_average_down_trigger

    def execute_average_down(self, current_price: float, additional_investment: float, *, now: float, step_pct: float) -> float:
        if current_price <= 0 or additional_investment <= 0:
            raise ValueError("current_price and additional_investment must be > 0.")
        additional_volume = additional_investment / current_price
        self.average_down_history.append(
            AverageDownEntry(
                timestamp=utc_now(),
                price=current_price,
                volume=additional_volume,
                invested_amount=additional_investment,
                previous_average_price=self.purchase_price,
            )
        )
        new_volume = self.volume + additional_volume
        new_average = (self.volume * self.purchase_price + additional_volume * current_price) / new_volume
        self.volume = new_volume
        self.total_invested += additional_investment
        self.purchase_price = new_average
        self.next_average_down_trigger = new_average * (1.0 - step_pct / 100.0)
        self.average_down_count += 1
        self.last_average_down_at = now
        return new_average

    def can_sell(self, current_price: float, margin: Optional[float], *, sell_target_margin: float) -> bool:
        if self.state is not PositionState.OPEN:
            return False
        if margin is None:
            return current_price > self.high
        return current_price > _price_level((self.high / (1.0 + sell_target_margin)) * (1.0 + margin))

    def unrealized_pl(self, current_price: float) -> Tuple[float, float]:
        pl = current_price * self.volume - self.total_invested
        pl_pct = pl / self.total_invested * 100.0 if self.total_invested else 0.0
        return pl, pl_pct

    def is_green(self) -> bool:
        return self.current_market_price >= self.original_purchase_price > 0

    def to_dict(self) -> Dict[str, Any]:
        pl, pl_pct = self.unrealized_pl(self.current_market_price) if self.current_market_price else (0.0, 0.0)
        return {
            "symbol": self.symbol,
            "state": self.state.value,
            "volume": self.volume,
            "purchase_price": self.purchase_price,
            "original_purchase_price": self.original_purchase_price,
            "total_invested": self.total_invested,
            "high": self.high,
            "average_down_count": self.average_down_count,
            "average_down_enabled": self.average_down_enabled,
            "next_average_down_trigger": self.next_average_down_trigger,
            "current_market_price": self.current_market_price,
            "unrealized_pl": pl,
            "unrealized_pl_pct": pl_pct,
            "average_down_history": [entry.to_dict() for entry in self.average_down_history],
            "order_id": self.order_id,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
        }


class PositionLedger:
    """Thread-safe ledger keyed by base asset. Readers share; writers are exclusive."""

    def __init__(
        self,
        *,
        step_pct: float = AVERAGE_DOWN_STEP_PCT,
        max_average_downs: int = MAX_AVERAGE_DOWNS,
        average_down_pause_seconds: float = AVERAGE_DOWN_PAUSE_SECONDS,
        average_down_enabled: bool = True,
        fee_haircut: float = FEE_HAIRCUT,
        sell_target_margin: float = SELL_TARGET_MARGIN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if step_pct <= 0 or step_pct >= 100:
            raise ValueError("step_pct must be within (0, 100).")
        if not 0 <= fee_haircut < 1:
            raise ValueError("fee_haircut must be within [0, 1).")
        self.step_pct = float(step_pct)
        self.max_average_downs = int(max_average_downs)
        self.average_down_pause_seconds = float(average_down_pause_seconds)
        self.average_down_enabled = bool(average_down_enabled)
        self.fee_haircut = float(fee_haircut)
        self.sell_target_margin = float(sell_target_margin)
        self._clock = clock
        self._positions: Dict[str, Position] = {}
        self._lock = ReadWriteLock()
        self._last_activity: Optional[float] = None

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    def initialize(
        self,
        symbol: str,
        fill_price: float,
        fill_volume: float,
        invested_amount: float,
        *,
        order_id: Optional[str] = None,
    ) -> Optional[Position]:
        """Open a position for the symbol's base asset; `None` when one already exists."""
        asset = base_asset(symbol)
        with self._lock.write():
            if asset in self._positions:
                logging.info("Position for %s already exists; skipping initialize.", asset)
                return None
            position = Position(symbol=str(symbol).upper(), order_id=order_id, average_down_enabled=self.average_down_enabled)
            position.initialize(
                fill_price,
                fill_volume,
                invested_amount,
                step_pct=self.step_pct,
                fee_haircut=self.fee_haircut,
                sell_target_margin=self.sell_target_margin,
            )
            self._positions[asset] = position
            self._last_activity = self._clock()
            logging.info(
                "Position opened %s: price %.6f volume %.6f invested %.2f target %.6f trigger %.6f",
                position.symbol,
                position.purchase_price,
                position.volume,
                position.total_invested,
                position.high,
                position.next_average_down_trigger,
            )
            return dataclasses.replace(position, average_down_history=list(position.average_down_history))

    def execute_average_down(self, symbol: str, current_price: float, additional_investment: float) -> Optional[float]:
        """Apply an average-down fill; `None` when the position is gone, disabled or at its limit."""
        with self._lock.write():
            position = self._positions.get(base_asset(symbol))
            if position is None:
                logging.warning("Average-down requested for %s without an open position.", symbol)
                return None
            if position.state is not PositionState.OPEN or not position.average_down_enabled:
                logging.info("Average-down for %s rejected: disabled or not open.", position.symbol)
                return None
            if position.average_down_count >= self.max_average_downs:
                logging.info(
                    "Average-down for %s rejected: limit %s reached.", position.symbol, self.max_average_downs
                )
                return None
            previous = position.purchase_price
            new_average = position.execute_average_down(
                current_price,
                additional_investment,
                now=self._clock(),
                step_pct=self.step_pct,
            )
            self._last_activity = self._clock()
            logging.info(
                "Average-down #%s/%s %s: +%.2f at %.6f, average %.6f -> %.6f, next trigger %.6f, target stays %.6f",
                position.average_down_count,
                self.max_average_downs,
                position.symbol,
                additional_investment,
                current_price,
                previous,
                new_average,
                position.next_average_down_trigger,
                position.high,
            )
            return new_average

    def disable_average_down(self, symbol: str, reason: str = "") -> bool:
        with self._lock.write():
            position = self._positions.get(base_asset(symbol))
            if position is None:
                return False
            if position.average_down_enabled:
                position.average_down_enabled = False
                logging.info("Average-down disabled for %s: %s", position.symbol, reason or "n/a")
            return True

    def update_market_price(self, symbol: str, price: float) -> None:
        with self._lock.write():
            position = self._positions.get(base_asset(symbol))
            if position is not None and price > 0:
                position.current_market_price = float(price)

    def close(self, symbol: str) -> Optional[Position]:
        """Remove the position for the symbol's base asset and return it as CLOSED."""
        with self._lock.write():
            position = self._positions.pop(base_asset(symbol), None)
            if position is None:
                return None
            position.state = PositionState.CLOSED
            self._last_activity = self._clock()
            logging.info("Position closed: %s", position.symbol)
            return position

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def should_average_down(self, symbol: str, current_price: float) -> bool:
        with self._lock.read():
            position = self._positions.get(base_asset(symbol))
            if position is None:
                return False
            return position.should_average_down(
                current_price,
                now=self._clock(),
                max_average_downs=self.max_average_downs,
                pause_seconds=self.average_down_pause_seconds,
            )

    def can_sell(self, symbol: str, current_price: float, margin: Optional[float] = None) -> bool:
        with self._lock.read():
            position = self._positions.get(base_asset(symbol))
            if position is None:
                return False
            return position.can_sell(current_price, margin, sell_target_margin=self.sell_target_margin)

    def unrealized_pl(self, symbol: str, current_price: float) -> Optional[Tuple[float, float]]:
        with self._lock.read():
            position = self._positions.get(base_asset(symbol))
            return None if position is None else position.unrealized_pl(current_price)

    def has_position(self, symbol: str) -> bool:
        with self._lock.read():
            return base_asset(symbol) in self._positions

    def get(self, symbol: str) -> Optional[Position]:
        with self._lock.read():
            position = self._positions.get(base_asset(symbol))
            if position is None:
                return None
            return dataclasses.replace(position, average_down_history=list(position.average_down_history))

    def positions(self) -> List[Position]:
        with self._lock.read():
            return [
                dataclasses.replace(p, average_down_history=list(p.average_down_history))
                for p in self._positions.values()
            ]

    def count(self) -> int:
        with self._lock.read():
            return len(self._positions)

    def assets(self) -> List[str]:
        with self._lock.read():
            return list(self._positions.keys())

    def green_ratio(self) -> Optional[float]:
        """Fraction of positions at or above their original purchase price (None when empty)."""
        with self._lock.read():
            if not self._positions:
                return None
            green = sum(1 for p in self._positions.values() if p.is_green())
            return green / len(self._positions)

    def seconds_since_activity(self) -> Optional[float]:
        with self._lock.read():
            if self._last_activity is None:
                return None
            return self._clock() - self._last_activity

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock.read():
            return [p.to_dict() for p in self._positions.values()]
