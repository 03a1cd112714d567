"""Decision loop coordinating eligibility, cooldowns, the position ledger and the budget."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.core.budget import BudgetEngine
from src.core.cooldowns import CooldownManager
from src.core.position_ledger import PositionLedger
from src.core.settings import BotSettings
from src.core.utils import base_asset, utc_now
from src.exchange.models import OrderSide, OrderType
from src.strategy import technicals
from src.strategy.eligibility import BlacklistManager
from src.strategy.sell_margin import SellMarginPolicy
from src.strategy.sizing import size_average_down, size_new_position
from src.strategy.volatility import VolatilityCheckResult, check_volatility_conditions


class TradingOrchestrator:
    """Central decision loop: one cycle at a time, every `cycle_interval_seconds`.

    Collaborators are duck-typed. `market_data` provides `get_ticker`, `get_klines`,
    `list_symbols` and `get_symbol_rules`; `execution` provides `place_order`,
    `get_order_fill` and `get_available_balance`.
    """

    def __init__(
        self,
        *,
        settings: BotSettings,
        market_data: Any,
        execution: Any,
        ledger: PositionLedger,
        budget: BudgetEngine,
        cooldowns: CooldownManager,
        blacklist: BlacklistManager,
        margin_policy: Optional[SellMarginPolicy] = None,
        now_fn: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.market_data = market_data
        self.execution = execution
        self.ledger = ledger
        self.budget = budget
        self.cooldowns = cooldowns
        self.blacklist = blacklist
        self.margin_policy = margin_policy or SellMarginPolicy(
            steps=settings.sell.margin_steps,
            stale_margin=settings.sell.stale_margin,
            stale_after_seconds=settings.sell.stale_after_seconds,
            min_positions_for_ratio=settings.sell.min_positions_for_ratio,
            small_portfolio_margin=settings.sell.small_portfolio_margin,
        )
        self._now = now_fn
        self._sleep = sleep
        self.stop_event = threading.Event()
        self._admin_lock = threading.RLock()
        self._bootstrapped = False
        self._running = False
        self._cycle_count = 0
        self.last_cycle: Dict[str, Any] = {}
        self.last_candidates: List[Dict[str, Any]] = []

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def bootstrap(self) -> float:
        """Read the quote balance once and seed the budget with it."""
        with self._admin_lock:
            quote = self.settings.quote_asset
            balance = float(self.execution.get_available_balance(quote))
            cap = self.settings.budget.max_trading_budget
            if cap is not None and balance > cap:
                logging.info("Trading budget capped at %.2f %s (balance %.2f).", cap, quote, balance)
                balance = cap
            self.budget.set_initial_balance(balance)
            self._bootstrapped = True
            self.blacklist.log_status()
            self.budget.log_status()
            return balance

    def start(self) -> None:
        """Run the synchronous decision loop until `stop()` is called."""
        if not self._bootstrapped:
            self.bootstrap()
        self._running = True
        logging.info("Orchestrator started with cycle cadence %ss", self.settings.cycle_interval_seconds)
        try:
            while not self.stop_event.is_set():
                try:
                    self.run_cycle_once()
                except Exception:
                    logging.exception("Trading cycle failed.")
                self.stop_event.wait(self.settings.cycle_interval_seconds)
        finally:
            self._running = False

    def stop(self) -> None:
        """Stop issuing new decisions; the running cycle finishes first."""
        logging.info("Stop signal received; shutting down orchestrator.")
        self.stop_event.set()

    # ------------------------------------------------------------------ #
    # Cycle
    # ------------------------------------------------------------------ #
    def run_cycle_once(self) -> Dict[str, Any]:
        with self._admin_lock:
            if not self._bootstrapped:
                self.bootstrap()
            self._cycle_count += 1
            started = self._now()
            actions: List[Dict[str, Any]] = []

            emergency = self._check_emergency()
            prices = self._refresh_position_prices()

            if emergency and self.settings.budget.emergency_liquidation:
                self._liquidate_all(prices, actions)
            elif emergency:
                self._process_sells(prices, actions)
            else:
                self._process_entries(actions)
                self._process_average_downs(prices, actions)
                self._process_sells(prices, actions)

            if self._cycle_count % self.settings.cooldowns.cleanup_every_cycles == 0:
                removed = self.cooldowns.cleanup(self.settings.cooldowns.cleanup_max_age_seconds)
                logging.info("Cooldown cleanup: %d symbols purged.", removed)
                self.budget.log_status()

            self.last_cycle = {
                "cycle": self._cycle_count,
                "started_at": started.isoformat(),
                "emergency": emergency,
                "actions": actions,
            }
            return self.last_cycle

    def _check_emergency(self) -> bool:
        if self.budget.emergency_active:
            return True
        if self.budget.should_activate_emergency_mode():
            self.budget.activate_emergency_mode()
            logging.error("Emergency mode: new buys stopped.")
            return True
        return False

    def _refresh_position_prices(self) -> Dict[str, float]:
        prices: Dict[str, float] = {}
        for position in self.ledger.positions():
            try:
                price = float(self.market_data.get_ticker(position.symbol))
            except Exception:
                logging.exception("Ticker for %s unavailable; skipping this cycle.", position.symbol)
                continue
            if price <= 0:
                continue
            self.ledger.update_market_price(position.symbol, price)
            prices[position.symbol] = price
        return prices

    # ------------------------------------------------------------------ #
    # Entries
    # ------------------------------------------------------------------ #
    def _universe(self) -> List[str]:
        if self.settings.symbols:
            symbols = list(self.settings.symbols)
        else:
            symbols = list(self.market_data.list_symbols(self.settings.quote_asset))
        return self.blacklist.filter_allowed(symbols)

    def scan_candidates(self) -> List[Tuple[str, VolatilityCheckResult]]:
        """Volatility scan over the eligible universe, widest range first."""
        filters = self.settings.filters
        now = self._now()
        start = now - timedelta(minutes=filters.volatility_lookback_minutes)
        results: List[Tuple[str, VolatilityCheckResult]] = []
        for symbol in self._universe():
            if self.ledger.has_position(symbol):
                continue
            try:
                klines = self.market_data.get_klines(symbol, filters.kline_interval, start, now)
                if not klines or len(klines) < 2:
                    continue
                confirmation = None
                if filters.require_confirmation:
                    confirmation = self.market_data.get_klines(
                        symbol,
                        filters.confirmation_interval,
                        now - timedelta(minutes=filters.confirmation_lookback_minutes),
                        now,
                    )
                result = check_volatility_conditions(
                    klines,
                    filters.min_volatility_percent,
                    distribution_window=filters.distribution_window,
                    strict_distribution=filters.strict_distribution,
                    confirmation_klines=confirmation,
                    require_confirmation=filters.require_confirmation,
                )
            except Exception as exc:
                logging.warning("Volatility scan failed for %s: %s", symbol, exc)
                continue
            if result.passed:
                results.append((symbol, result))
        results.sort(key=lambda item: item[1].volatility_percent, reverse=True)
        top = results[: filters.scan_top_n]
        self.last_candidates = [{"symbol": s, **r.to_dict()} for s, r in top]
        return top

    def _process_entries(self, actions: List[Dict[str, Any]]) -> None:
        available = self.budget.status().available
        if available < self.settings.budget.min_available_budget:
            logging.info(
                "Buying paused: available budget %.2f below %.2f.",
                available,
                self.settings.budget.min_available_budget,
            )
            return
        try:
            candidates = self.scan_candidates()
        except Exception:
            logging.exception("Candidate scan failed.")
            return
        for symbol, _result in candidates:
            try:
                action = self.try_open_position(symbol)
            except Exception:
                logging.exception("Entry for %s failed.", symbol)
                continue
            if action:
                actions.append(action)

    def _passes_entry_filters(self, symbol: str, price: float) -> bool:
        filters = self.settings.filters
        now = self._now()
        if filters.recent_high_enabled:
            try:
                klines = self.market_data.get_klines(
                    symbol,
                    filters.recent_high_interval,
                    now - timedelta(days=filters.recent_high_days),
                    now,
                )
            except Exception as exc:
                logging.warning("Recent-high data for %s unavailable (%s); not blocking.", symbol, exc)
                klines = None
            if technicals.is_near_recent_high(price, klines, filters.recent_high_threshold):
                logging.info("Entry for %s blocked: too close to %d-day high.", symbol, filters.recent_high_days)
                return False
        if filters.rsi_enabled:
            try:
                klines = self.market_data.get_klines(
                    symbol,
                    filters.kline_interval,
                    now - timedelta(minutes=filters.rsi_lookback_minutes),
                    now,
                )
                closes = [float(k["close"]) for k in klines or []]
            except Exception as exc:
                logging.warning("RSI data for %s unavailable (%s); not blocking.", symbol, exc)
                closes = []
            if technicals.is_rsi_overbought(closes, filters.rsi_threshold, filters.rsi_period, filters.rsi_min_samples):
                logging.info("Entry for %s blocked: RSI overbought.", symbol)
                return False
        return True

    def try_open_position(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Run the entry pipeline for one symbol; returns the action taken, if any."""
        verdict = self.blacklist.evaluate(symbol)
        if not verdict.allowed or self.ledger.has_position(symbol):
            return None
        price = float(self.market_data.get_ticker(symbol))
        if price <= 0:
            return None
        if not self._passes_entry_filters(symbol, price):
            return None
        if not self.cooldowns.can_buy(symbol):
            return None

        size = size_new_position(self.market_data.get_symbol_rules(symbol), price, self.settings.min_position_value)
        if size is None:
            logging.info("No order size for %s (missing symbol rules).", symbol)
            return None
        amount = size.amount
        if not self.budget.can_afford_strict(amount, symbol):
            return None
        if not self.budget.reserve_for_purchase(amount, symbol):
            return None

        order_id = self._place_buy(symbol, amount)
        if order_id is None:
            return None
        self.cooldowns.record_buy(symbol)
        fill_price = self._lookup_fill(symbol, order_id, fallback=price)
        position = self.ledger.initialize(symbol, fill_price, amount / fill_price, amount, order_id=order_id)
        self.budget.confirm_purchase(symbol)
        if position is None:
            logging.error("Order %s for %s filled but a position already exists; capital stays invested.", order_id, symbol)
            return None
        return {"action": "buy", "symbol": position.symbol, "amount": amount, "price": fill_price, "order_id": order_id}

    def _place_buy(self, symbol: str, amount: float) -> Optional[str]:
        """Place a market buy for `amount`; any failure rolls the reservation back."""
        try:
            result = self.execution.place_order(symbol, OrderSide.BUY, OrderType.MARKET, amount)
        except Exception:
            logging.exception("Buy order for %s raised; rolling back reservation.", symbol)
            self.budget.rollback_reservation(symbol)
            return None
        if not result.success or not result.order_id:
            logging.warning("Buy order for %s failed: %s", symbol, result.error)
            self.budget.rollback_reservation(symbol)
            return None
        return result.order_id

    def _lookup_fill(self, symbol: str, order_id: str, *, fallback: float) -> float:
        attempts = self.settings.fill_lookup_attempts
        for attempt in range(1, attempts + 1):
            try:
                fill = self.execution.get_order_fill(order_id)
            except Exception as exc:
                logging.warning("Fill lookup for %s failed (attempt %d/%d): %s", order_id, attempt, attempts, exc)
                fill = None
            if fill is not None and fill > 0:
                return float(fill)
            if attempt < attempts:
                self._sleep(self.settings.fill_lookup_delay_seconds)
        try:
            estimate = float(self.market_data.get_ticker(symbol))
        except Exception:
            estimate = 0.0
        estimate = estimate if estimate > 0 else fallback
        logging.warning("Fill price for %s unknown; using estimate %.6f.", order_id, estimate)
        return estimate

    # ------------------------------------------------------------------ #
    # Average-down
    # ------------------------------------------------------------------ #
    def _process_average_downs(self, prices: Dict[str, float], actions: List[Dict[str, Any]]) -> None:
        for position in self.ledger.positions():
            price = prices.get(position.symbol)
            if price is None:
                continue
            try:
                action = self.try_average_down(position.symbol, price)
            except Exception:
                logging.exception("Average-down for %s failed.", position.symbol)
                continue
            if action:
                actions.append(action)

    def try_average_down(self, symbol: str, price: float) -> Optional[Dict[str, Any]]:
        if not self.ledger.should_average_down(symbol, price):
            return None
        if not self.cooldowns.can_buy(symbol):
            return None
        position = self.ledger.get(symbol)
        if position is None:
            return None
        amount = size_average_down(position.total_invested, position.average_down_count)
        if amount <= 0:
            return None
        if not self.budget.can_afford_strict(amount, symbol) or not self.budget.reserve_for_purchase(amount, symbol):
            self.ledger.disable_average_down(symbol, f"insufficient budget for {amount:.2f}")
            return None

        order_id = self._place_buy(symbol, amount)
        if order_id is None:
            return None
        self.cooldowns.record_buy(symbol)
        fill_price = self._lookup_fill(symbol, order_id, fallback=price)
        new_average = self.ledger.execute_average_down(symbol, fill_price, amount)
        self.budget.confirm_purchase(symbol)
        if new_average is None:
            logging.error("Order %s for %s filled but the ledger refused the average-down.", order_id, symbol)
            return None
        return {
            "action": "average_down",
            "symbol": position.symbol,
            "amount": amount,
            "price": fill_price,
            "new_average": new_average,
            "order_id": order_id,
        }

    # ------------------------------------------------------------------ #
    # Exits
    # ------------------------------------------------------------------ #
    def current_sell_margin(self) -> Optional[float]:
        if not self.settings.sell.adaptive_margin_enabled:
            return None
        return self.margin_policy.margin_for(self.ledger)

    def _process_sells(self, prices: Dict[str, float], actions: List[Dict[str, Any]]) -> None:
        margin = self.current_sell_margin()
        for position in self.ledger.positions():
            symbol = position.symbol
            price = prices.get(symbol)
            if price is None or not self.cooldowns.can_sell(symbol):
                continue
            if not self.ledger.can_sell(symbol, price, margin):
                continue
            try:
                action = self.sell_position(symbol, price, reason="target")
            except Exception:
                logging.exception("Sell for %s failed.", symbol)
                continue
            if action:
                actions.append(action)

    def _liquidate_all(self, prices: Dict[str, float], actions: List[Dict[str, Any]]) -> None:
        for position in self.ledger.positions():
            price = prices.get(position.symbol, position.current_market_price)
            try:
                action = self.sell_position(position.symbol, price, reason="emergency")
            except Exception:
                logging.exception("Emergency sell for %s failed.", position.symbol)
                continue
            if action:
                actions.append(action)

    def sell_position(self, symbol: str, price: float, *, reason: str) -> Optional[Dict[str, Any]]:
        position = self.ledger.get(symbol)
        if position is None:
            return None
        held = float(self.execution.get_available_balance(base_asset(symbol)))
        volume = min(position.volume, held)
        if volume <= 0:
            logging.warning("Nothing to sell for %s (ledger %.8f, balance %.8f).", symbol, position.volume, held)
            return None
        quote = self.settings.quote_asset
        quote_before = float(self.execution.get_available_balance(quote))
        result = self.execution.place_order(symbol, OrderSide.SELL, OrderType.MARKET, volume)
        if not result.success or not result.order_id:
            logging.warning("Sell order for %s failed: %s", symbol, result.error)
            return None
        fill_price = self._lookup_fill(symbol, result.order_id, fallback=price)
        proceeds = self._net_proceeds(quote, quote_before, gross=volume * fill_price)
        settlement = self.budget.release_from_sale(position.total_invested, proceeds, symbol)
        self.cooldowns.record_sell(symbol)
        self.ledger.close(symbol)
        logging.info(
            "Sold %s (%s): volume %.8f at %.6f, proceeds %.2f, profit %.2f",
            position.symbol,
            reason,
            volume,
            fill_price,
            proceeds,
            settlement.profit,
        )
        return {
            "action": "sell",
            "reason": reason,
            "symbol": position.symbol,
            "volume": volume,
            "price": fill_price,
            "proceeds": proceeds,
            "profit": settlement.profit,
            "protected": settlement.protected,
            "order_id": result.order_id,
        }

    def _net_proceeds(self, quote: str, quote_before: float, *, gross: float) -> float:
        """Quote actually credited by the sale (fees included); the gross fill estimate if it is not visible yet."""
        try:
            credited = float(self.execution.get_available_balance(quote)) - quote_before
        except Exception as exc:
            logging.warning("Quote balance after sale unavailable (%s); booking gross %.2f.", exc, gross)
            return gross
        if credited <= 0:
            logging.warning("Sale not yet reflected in %s balance; booking gross %.2f.", quote, gross)
            return gross
        return credited

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #
    def status_snapshot(self) -> Dict[str, Any]:
        """Read-only view for the status API; safe to call while a cycle runs."""
        return {
            "running": self._running and not self.stop_event.is_set(),
            "cycles": self._cycle_count,
            "quote_asset": self.settings.quote_asset,
            "budget": self.budget.status().to_dict(),
            "protection_rate": self.budget.protection_rate(),
            "recent_sales": self.budget.recent_sales(5),
            "positions": self.ledger.snapshot(),
            "green_ratio": self.ledger.green_ratio(),
            "sell_margin": self.current_sell_margin(),
            "cooldowns": [info.to_dict() for info in self.cooldowns.active_cooldowns()],
            "candidates": list(self.last_candidates),
            "last_cycle": dict(self.last_cycle),
        }
