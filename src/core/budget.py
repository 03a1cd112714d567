"""Trading budget with strict profit protection.

The trading budget can never grow beyond the initial balance. Realized profit is
split by the configured protection mode into a protected part (never reinvested)
and a reinvestable part, and anything that would lift the budget above its
ceiling is protected as well.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

from src.core.utils import utc_now


@dataclass(frozen=True)
class FullProtection:
    """Protect 100% of every realized profit."""

    label = "full"

    def protect(self, profit: float) -> float:
        return profit if profit > 0 else 0.0


@dataclass(frozen=True)
class PercentageProtection:
    """Protect `percent` % of every realized profit."""

    percent: float = 80.0
    label = "percentage"

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.percent) <= 100.0:
            raise ValueError("Protection percent must be within [0, 100].")

    def protect(self, profit: float) -> float:
        return profit * float(self.percent) / 100.0 if profit > 0 else 0.0


@dataclass(frozen=True)
class ThresholdProtection:
    """Keep up to `threshold` of a profit reinvestable and protect the rest."""

    threshold: float = 50.0
    label = "threshold"

    def __post_init__(self) -> None:
        if float(self.threshold) < 0.0:
            raise ValueError("Protection threshold must be >= 0.")

    def protect(self, profit: float) -> float:
        return max(0.0, profit - float(self.threshold)) if profit > 0 else 0.0


ProtectionMode = Union[FullProtection, PercentageProtection, ThresholdProtection]


def parse_protection_mode(cfg: Optional[Dict[str, Any]]) -> ProtectionMode:
    """Build a protection mode from a config mapping such as `{"mode": "threshold", "threshold": 50}`."""
    cfg = cfg or {}
    mode = str(cfg.get("mode", "full") or "full").lower().strip()
    if mode == "full":
        return FullProtection()
    if mode == "percentage":
        return PercentageProtection(percent=float(cfg.get("percentage", 80.0)))
    if mode == "threshold":
        return ThresholdProtection(threshold=float(cfg.get("threshold", 50.0)))
    raise ValueError(f"Unknown profit protection mode: {mode}")


@dataclass(frozen=True)
class BudgetStatus:
    available: float
    invested: float
    realized_profit: float
    protected_profit: float
    initial: float
    ceiling: float
    overall_pl: float
    protection_mode: str = "full"
    emergency_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "invested": self.invested,
            "realized_profit": self.realized_profit,
            "protected_profit": self.protected_profit,
            "initial": self.initial,
            "ceiling": self.ceiling,
            "overall_pl": self.overall_pl,
            "protection_mode": self.protection_mode,
            "emergency_active": self.emergency_active,
        }


@dataclass(frozen=True)
class SaleSettlement:
    profit: float
    protected: float
    reinvested: float
    available_after: float


class BudgetEngine:
    """Reserves and releases trading capital; every mutation runs under one lock."""

    def __init__(
        self,
        protection: Optional[ProtectionMode] = None,
        *,
        emergency_loss_pct: float = 90.0,
        history_limit: int = 500,
    ) -> None:
        if int(history_limit) < 1:
            raise ValueError("history_limit must be >= 1.")
        self._lock = threading.Lock()
        self._protection: ProtectionMode = protection or FullProtection()
        self._emergency_loss_pct = float(emergency_loss_pct)
        self._initial = 0.0
        self._ceiling = 0.0
        self._available = 0.0
        self._invested = 0.0
        self._realized_profit = 0.0
        self._protected_profit = 0.0
        self._emergency_active = False
        self._pending: Dict[str, float] = {}
        self._history: Deque[Tuple[datetime, float, str, str]] = deque(maxlen=int(history_limit))

    def set_initial_balance(self, balance: float) -> bool:
        """Initialize capital once; later calls are ignored so the ceiling stays stable."""
        balance = float(balance)
        if balance < 0:
            raise ValueError("Initial balance must be >= 0.")
        with self._lock:
            if self._initial != 0:
                logging.info("Initial balance already set to %.2f; ignoring %.2f.", self._initial, balance)
                return False
            self._initial = balance
            self._ceiling = balance
            self._available = balance
            self._invested = 0.0
            self._realized_profit = 0.0
            self._protected_profit = 0.0
            logging.info(
                "Profit protection active: budget %.2f (ceiling never exceeded), mode %s",
                balance,
                self._protection.label,
            )
            return True

    def configure_protection(self, mode: ProtectionMode) -> None:
        with self._lock:
            self._protection = mode
        logging.info("Profit protection configured: %s", mode)

    def reserve_for_purchase(self, amount: float, symbol: str) -> bool:
        """Debit `available` and credit `invested` atomically; no partial reservations."""
        amount = self._check_amount(amount, "amount")
        with self._lock:
            if self._available < amount:
                logging.warning(
                    "Budget insufficient for %s: need %.2f, available %.2f (protected %.2f not usable)",
                    symbol,
                    amount,
                    self._available,
                    self._protected_profit,
                )
                return False
            self._available -= amount
            self._invested += amount
            self._pending[symbol] = self._pending.get(symbol, 0.0) + amount
            logging.info("Budget reserved for %s: %.2f (available %.2f)", symbol, amount, self._available)
            return True

    def confirm_purchase(self, symbol: str) -> float:
        """Mark the pending reservation for `symbol` as filled; returns the confirmed amount."""
        with self._lock:
            return self._pending.pop(symbol, 0.0)

    def rollback_reservation(self, symbol: str) -> float:
        """Undo a pending reservation (zero-proceeds release). A second call is a no-op."""
        with self._lock:
            amount = self._pending.pop(symbol, 0.0)
            if amount <= 0:
                return 0.0
            self._available += amount
            self._invested -= amount
            logging.info("Budget reservation rolled back for %s: %.2f (available %.2f)", symbol, amount, self._available)
            return amount

    def release_from_sale(self, original_investment: float, sale_proceeds: float, symbol: str) -> SaleSettlement:
        original_investment = self._check_amount(original_investment, "original_investment")
        sale_proceeds = self._check_amount(sale_proceeds, "sale_proceeds")
        with self._lock:
            if original_investment > self._invested + 1e-6:
                raise ValueError(
                    f"Cannot release {original_investment:.2f} for {symbol}: only {self._invested:.2f} is invested."
                )
            self._available += original_investment
            self._invested = max(0.0, self._invested - original_investment)
            profit = sale_proceeds - original_investment
            self._realized_profit += profit

            protected = self._protection.protect(profit)
            reinvestable = profit - protected
            if profit < 0:
                self._available = max(0.0, self._available + profit)
                reinvestable = 0.0
            elif reinvestable > 0:
                headroom = max(0.0, self._ceiling - (self._available + self._invested))
                if reinvestable > headroom:
                    excess = reinvestable - headroom
                    protected += excess
                    reinvestable = headroom
                    logging.warning("Budget ceiling reached; additional %.2f protected.", excess)
                self._available += reinvestable
            self._protected_profit += protected

            now = utc_now()
            self._history.append((now, profit, symbol, "SALE"))
            if protected > 0:
                self._history.append((now, protected, symbol, "PROTECTED"))

            logging.info(
                "Sale settled %s: invested %.2f proceeds %.2f profit %.2f protected %.2f reinvested %.2f available %.2f",
                symbol,
                original_investment,
                sale_proceeds,
                profit,
                protected,
                reinvestable,
                self._available,
            )
            return SaleSettlement(
                profit=profit,
                protected=protected,
                reinvested=reinvestable,
                available_after=self._available,
            )

    def protect(self, profit: float) -> float:
        with self._lock:
            return self._protection.protect(float(profit))

    def can_afford_strict(self, amount: float, symbol: str) -> bool:
        amount = self._check_amount(amount, "amount")
        with self._lock:
            can_afford = self._available >= amount
            if not can_afford:
                logging.info(
                    "Purchase of %s declined by profit protection: need %.2f, available %.2f, protected %.2f",
                    symbol,
                    amount,
                    self._available,
                    self._protected_profit,
                )
            return can_afford

    def should_activate_emergency_mode(self) -> bool:
        with self._lock:
            if self._initial <= 0:
                return False
            loss_pct = (self._initial - (self._available + self._invested)) / self._initial * 100.0
            return loss_pct >= self._emergency_loss_pct

    def activate_emergency_mode(self) -> bool:
        """Switch to emergency mode (one-way). Returns True only on the first activation."""
        with self._lock:
            if self._emergency_active:
                return False
            self._emergency_active = True
            remaining = self._available + self._invested
            loss = self._initial - remaining
            loss_pct = loss / self._initial * 100.0 if self._initial else 0.0
            logging.error("EMERGENCY MODE ACTIVATED: loss %.2f (%.1f%%), protected profit %.2f is safe", loss, loss_pct, self._protected_profit)
            return True

    @property
    def emergency_active(self) -> bool:
        with self._lock:
            return self._emergency_active

    def status(self) -> BudgetStatus:
        with self._lock:
            return BudgetStatus(
                available=self._available,
                invested=self._invested,
                realized_profit=self._realized_profit,
                protected_profit=self._protected_profit,
                initial=self._initial,
                ceiling=self._ceiling,
                overall_pl=self._available + self._invested + self._protected_profit - self._initial,
                protection_mode=self._protection.label,
                emergency_active=self._emergency_active,
            )

    def protection_rate(self) -> float:
        """Share of realized profit that ended up protected, in percent."""
        with self._lock:
            if self._realized_profit <= 0:
                return 0.0
            return self._protected_profit / self._realized_profit * 100.0

    def recent_sales(self, limit: int = 5) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        with self._lock:
            sales = [h for h in self._history if h[3] == "SALE"][-int(limit):]
        return [
            {"timestamp": ts.isoformat(), "profit": profit, "symbol": symbol}
            for ts, profit, symbol, _ in reversed(sales)
        ]

    def log_status(self) -> None:
        status = self.status()
        logging.info(
            "Budget status: available %.2f, invested %.2f, realized %.2f, protected %.2f, initial %.2f, ceiling %.2f, protection rate %.1f%%",
            status.available,
            status.invested,
            status.realized_profit,
            status.protected_profit,
            status.initial,
            status.ceiling,
            self.protection_rate(),
        )
        for sale in self.recent_sales(5):
            logging.info("  %s: %.2f (%s)", sale["symbol"], sale["profit"], sale["timestamp"])

    @staticmethod
    def _check_amount(value: float, name: str) -> float:
        value = float(value)
        if value < 0:
            raise ValueError(f"{name} must be >= 0, got {value}.")
        return value
