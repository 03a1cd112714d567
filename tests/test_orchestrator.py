import dataclasses

import pytest

from helpers import FakeClock, FakeMarket, kline
from src.core.budget import BudgetEngine
from src.core.cooldowns import CooldownManager
from src.core.orchestrator import TradingOrchestrator
from src.core.position_ledger import PositionLedger
from src.core.settings import BotSettings, BudgetSettings, CooldownSettings
from src.exchange.models import OrderResult
from src.exchange.paper_trading import PaperTradingEngine
from src.strategy.eligibility import BlacklistManager


def _settings(**overrides):
    base = BotSettings(
        symbols=("SOL-EUR",),
        fill_lookup_delay_seconds=0.0,
        cooldowns=CooldownSettings(
            buy_delay_seconds=0,
            sell_delay_seconds=0,
            global_cooldown_seconds=0,
            sell_lockout_seconds=300,
        ),
    )
    return dataclasses.replace(base, **overrides)


def _build(market=None, settings=None, execution_cls=PaperTradingEngine, cooldowns=None, sleeps=None):
    market = market or FakeMarket({"SOL-EUR": 100.0})
    settings = settings or _settings()
    clock = FakeClock()
    execution = execution_cls(market_data=market, initial_quote_balance=1_000.0, slippage=0.0, spread_bps=0.0)
    cooldowns = cooldowns or CooldownManager(
        buy_delay=settings.cooldowns.buy_delay_seconds,
        sell_delay=settings.cooldowns.sell_delay_seconds,
        global_cooldown=settings.cooldowns.global_cooldown_seconds,
        sell_lockout=settings.cooldowns.sell_lockout_seconds,
        clock=clock,
    )
    sleeps = sleeps if sleeps is not None else []
    orchestrator = TradingOrchestrator(
        settings=settings,
        market_data=market,
        execution=execution,
        ledger=PositionLedger(clock=clock),
        budget=BudgetEngine(settings.budget.protection, emergency_loss_pct=settings.budget.emergency_loss_pct),
        cooldowns=cooldowns,
        blacklist=BlacklistManager(),
        sleep=sleeps.append,
    )
    return orchestrator, market, execution


class FailingEngine(PaperTradingEngine):
    def place_order(self, symbol, side, order_type, amount):
        return OrderResult.failed("exchange unavailable")


class RaisingEngine(PaperTradingEngine):
    def place_order(self, symbol, side, order_type, amount):
        raise RuntimeError("connection reset")


class NoFillEngine(PaperTradingEngine):
    def get_order_fill(self, order_id):
        return None


def test_buy_average_down_and_profitable_sell():
    orchestrator, market, execution = _build()

    first = orchestrator.run_cycle_once()
    assert [a["action"] for a in first["actions"]] == ["buy"]
    position = orchestrator.ledger.get("SOL-EUR")
    assert position.total_invested == pytest.approx(102.102)
    assert position.high == pytest.approx(100.5)
    assert orchestrator.budget.status().available == pytest.approx(1_000.0 - 102.102)

    market.prices["SOL-EUR"] = 97.0
    second = orchestrator.run_cycle_once()
    assert [a["action"] for a in second["actions"]] == ["average_down"]
    position = orchestrator.ledger.get("SOL-EUR")
    assert position.average_down_count == 1
    assert position.total_invested == pytest.approx(204.204)
    assert position.high == pytest.approx(100.5)
    # Nobody is green at 97, so the widest margin applies.
    assert orchestrator.current_sell_margin() == pytest.approx(0.015)

    market.prices["SOL-EUR"] = 110.0
    eur_before = execution.get_available_balance("EUR")
    third = orchestrator.run_cycle_once()
    (sale,) = third["actions"]
    assert sale["action"] == "sell"
    assert sale["profit"] > 0
    # Booked proceeds are what the engine credited, after the sell fee.
    assert sale["proceeds"] == pytest.approx(execution.get_available_balance("EUR") - eur_before)
    assert sale["proceeds"] < sale["volume"] * sale["price"]
    assert sale["profit"] == pytest.approx(sale["proceeds"] - 204.204)

    status = orchestrator.budget.status()
    assert status.available == pytest.approx(1_000.0)
    assert status.invested == pytest.approx(0.0, abs=1e-9)
    assert status.protected_profit == pytest.approx(status.realized_profit)
    assert status.realized_profit > 0
    assert orchestrator.ledger.count() == 0
    assert execution.get_available_balance("SOL") == pytest.approx(0.0, abs=1e-12)
    assert not orchestrator.cooldowns.can_buy("SOL-EUR")

    fourth = orchestrator.run_cycle_once()
    assert fourth["actions"] == []


@pytest.mark.parametrize("engine_cls", [FailingEngine, RaisingEngine])
def test_failed_buy_rolls_back_reservation(engine_cls):
    orchestrator, _, _ = _build(execution_cls=engine_cls)
    cycle = orchestrator.run_cycle_once()
    assert cycle["actions"] == []
    status = orchestrator.budget.status()
    assert status.available == pytest.approx(1_000.0)
    assert status.invested == 0.0
    assert orchestrator.ledger.count() == 0
    assert orchestrator.cooldowns.can_buy("SOL-EUR")


def test_unknown_fill_falls_back_to_ticker():
    sleeps = []
    settings = _settings(fill_lookup_attempts=3, fill_lookup_delay_seconds=0.5)
    orchestrator, market, _ = _build(settings=settings, execution_cls=NoFillEngine, sleeps=sleeps)
    orchestrator.run_cycle_once()
    assert sleeps == [0.5, 0.5]
    position = orchestrator.ledger.get("SOL-EUR")
    assert position.current_market_price == pytest.approx(100.0)
    assert position.high == pytest.approx(100.5)


def test_blacklisted_symbol_is_never_bought():
    orchestrator, market, _ = _build()
    orchestrator.blacklist.add_asset("SOL")
    assert orchestrator.try_open_position("SOL-EUR") is None
    orchestrator.run_cycle_once()
    assert orchestrator.ledger.count() == 0
    assert market.kline_calls == []
    assert market.ticker_calls == []


def test_blacklist_never_blocks_sells():
    orchestrator, market, _ = _build()
    orchestrator.run_cycle_once()
    orchestrator.blacklist.add_asset("SOL")
    market.prices["SOL-EUR"] = 110.0
    cycle = orchestrator.run_cycle_once()
    assert [a["action"] for a in cycle["actions"]] == ["sell"]


def test_overbought_rsi_blocks_entry():
    orchestrator, market, _ = _build()
    market.rising.add("SOL-EUR")
    orchestrator.run_cycle_once()
    assert orchestrator.ledger.count() == 0
    assert orchestrator.last_candidates[0]["symbol"] == "SOL-EUR"
    assert orchestrator.budget.status().available == pytest.approx(1_000.0)


def test_recent_high_blocks_entry():
    class NearHighMarket(FakeMarket):
        def get_klines(self, symbol, interval, start, end):
            if interval == "1d":
                price = self.prices[symbol]
                return [kline(price, price * 1.01, price * 0.5, price)]
            return super().get_klines(symbol, interval, start, end)

    orchestrator, _, _ = _build(market=NearHighMarket({"SOL-EUR": 100.0}))
    orchestrator.run_cycle_once()
    assert orchestrator.ledger.count() == 0


def test_buying_pauses_below_min_available_budget():
    settings = _settings(budget=BudgetSettings(min_available_budget=2_000.0))
    orchestrator, market, _ = _build(settings=settings)
    orchestrator.run_cycle_once()
    assert market.kline_calls == []
    assert orchestrator.ledger.count() == 0


def test_bootstrap_caps_budget_and_disables_average_down_when_short():
    settings = _settings(budget=BudgetSettings(max_trading_budget=150.0))
    orchestrator, market, _ = _build(settings=settings)
    assert orchestrator.bootstrap() == pytest.approx(150.0)

    orchestrator.run_cycle_once()
    assert orchestrator.budget.status().available == pytest.approx(150.0 - 102.102)

    market.prices["SOL-EUR"] = 97.0
    cycle = orchestrator.run_cycle_once()
    assert cycle["actions"] == []
    position = orchestrator.ledger.get("SOL-EUR")
    assert not position.average_down_enabled
    assert position.average_down_count == 0
    assert orchestrator.budget.status().invested == pytest.approx(102.102)


def _realize_loss(orchestrator, amount, proceeds):
    orchestrator.budget.reserve_for_purchase(amount, "LOSS-EUR")
    orchestrator.budget.confirm_purchase("LOSS-EUR")
    orchestrator.budget.release_from_sale(amount, proceeds, "LOSS-EUR")


def test_emergency_liquidates_when_enabled():
    settings = _settings(budget=BudgetSettings(emergency_loss_pct=5.0, emergency_liquidation=True))
    orchestrator, _, _ = _build(settings=settings)
    orchestrator.run_cycle_once()
    assert orchestrator.ledger.count() == 1

    _realize_loss(orchestrator, 200.0, 100.0)
    cycle = orchestrator.run_cycle_once()
    assert cycle["emergency"]
    assert [(a["action"], a["reason"]) for a in cycle["actions"]] == [("sell", "emergency")]
    assert orchestrator.ledger.count() == 0
    assert orchestrator.budget.emergency_active

    orchestrator.cooldowns.sell_lockout = 0.0
    assert orchestrator.run_cycle_once()["actions"] == []
    assert orchestrator.ledger.count() == 0


def test_emergency_without_liquidation_only_stops_buying():
    settings = _settings(budget=BudgetSettings(emergency_loss_pct=5.0))
    orchestrator, market, _ = _build(settings=settings)
    orchestrator.run_cycle_once()
    _realize_loss(orchestrator, 200.0, 100.0)

    market.prices["SOL-EUR"] = 90.0
    scans = len(market.kline_calls)
    cycle = orchestrator.run_cycle_once()
    assert cycle["emergency"]
    assert cycle["actions"] == []
    assert orchestrator.ledger.get("SOL-EUR").average_down_count == 0

    market.prices["SOL-EUR"] = 150.0
    cycle = orchestrator.run_cycle_once()
    assert [(a["action"], a["reason"]) for a in cycle["actions"]] == [("sell", "target")]
    assert orchestrator.ledger.count() == 0
    assert len(market.kline_calls) == scans


def test_cleanup_runs_on_cadence():
    class CountingCooldowns(CooldownManager):
        calls = 0

        def cleanup(self, max_age):
            CountingCooldowns.calls += 1
            return super().cleanup(max_age)

    settings = _settings(symbols=(), cooldowns=CooldownSettings(cleanup_every_cycles=2))
    orchestrator, _, _ = _build(
        market=FakeMarket({}, symbols=[]),
        settings=settings,
        cooldowns=CountingCooldowns(clock=FakeClock()),
    )
    for _ in range(5):
        orchestrator.run_cycle_once()
    assert CountingCooldowns.calls == 2


def test_scan_ranks_by_volatility_and_skips_ineligible():
    class RangedMarket(FakeMarket):
        widths = {"SOL-EUR": 0.02, "ADA-EUR": 0.05, "DOT-EUR": 0.001}

        def get_klines(self, symbol, interval, start, end):
            self.kline_calls.append((symbol, interval))
            width = self.widths[symbol]
            return [kline(0.99, 1.0 + width, 1.0 - width, 1.0) for _ in range(10)]

    prices = {"SOL-EUR": 1.0, "ADA-EUR": 1.0, "DOT-EUR": 1.0, "USDC-EUR": 1.0}
    settings = _settings(symbols=())
    orchestrator, market, _ = _build(market=RangedMarket(prices), settings=settings)
    ranked = orchestrator.scan_candidates()
    assert [symbol for symbol, _ in ranked] == ["ADA-EUR", "SOL-EUR"]
    assert [c["symbol"] for c in orchestrator.last_candidates] == ["ADA-EUR", "SOL-EUR"]
    assert all(symbol != "USDC-EUR" for symbol, _ in market.kline_calls)


def test_start_runs_until_stopped():
    class StoppingMarket(FakeMarket):
        orchestrator = None

        def list_symbols(self, quote):
            self.orchestrator.stop()
            return []

    market = StoppingMarket({}, symbols=[])
    orchestrator, _, _ = _build(market=market, settings=_settings(symbols=()))
    market.orchestrator = orchestrator
    orchestrator.start()
    assert orchestrator.last_cycle["cycle"] == 1
    assert orchestrator.budget.status().initial == pytest.approx(1_000.0)
    assert not orchestrator.status_snapshot()["running"]


def test_status_snapshot_after_buy():
    orchestrator, _, _ = _build()
    orchestrator.run_cycle_once()
    snapshot = orchestrator.status_snapshot()
    assert snapshot["cycles"] == 1
    assert snapshot["quote_asset"] == "EUR"
    assert snapshot["budget"]["invested"] == pytest.approx(102.102)
    assert len(snapshot["positions"]) == 1
    # The fee haircut puts the break-even just above the fill price.
    assert snapshot["green_ratio"] == 0.0
    assert snapshot["sell_margin"] == pytest.approx(0.015)
    assert snapshot["last_cycle"]["actions"][0]["action"] == "buy"
    assert snapshot["cooldowns"] == []
    assert not snapshot["running"]
