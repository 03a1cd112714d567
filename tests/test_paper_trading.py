import pytest

from helpers import FakeMarket
from src.exchange.errors import OrderRejected
from src.exchange.models import OrderSide, OrderType
from src.exchange.paper_trading import PaperTradingEngine, SimulatedOrder
from src.exchange.symbol_rules import SymbolRules


def _engine(price=100.0, **kwargs):
    market = FakeMarket({"A-EUR": price})
    kwargs.setdefault("slippage", 0.0)
    kwargs.setdefault("spread_bps", 0.0)
    return market, PaperTradingEngine(market_data=market, initial_quote_balance=1_000.0, **kwargs)


def test_market_buy_and_sell_round_trip():
    market, engine = _engine()
    result = engine.place_order("A-EUR", OrderSide.BUY, OrderType.MARKET, 100.0)
    assert result.success
    assert result.order_id == "paper-1"
    assert engine.get_order_fill(result.order_id) == pytest.approx(100.0)
    assert engine.get_available_balance("EUR") == pytest.approx(900.0)
    # Buy fee is taken from the received base asset.
    assert engine.get_available_balance("A") == pytest.approx(0.999)

    market.prices["A-EUR"] = 110.0
    sold = engine.place_order("A-EUR", "sell", "market", 0.999)
    assert sold.success
    assert engine.get_available_balance("A") == 0.0
    assert engine.get_available_balance("EUR") == pytest.approx(900.0 + 0.999 * 110.0 * 0.999)
    assert engine.get_portfolio_snapshot()["trades_executed"] == 2


def test_spread_and_slippage_move_price_against_trader():
    market, engine = _engine(slippage=0.001, spread_bps=10.0)
    buy = engine.place_order("A-EUR", OrderSide.BUY, OrderType.MARKET, 100.0)
    assert engine.get_order_fill(buy.order_id) == pytest.approx(100.0 * 1.0015)
    sell = engine.place_order("A-EUR", OrderSide.SELL, OrderType.MARKET, 0.5)
    assert engine.get_order_fill(sell.order_id) == pytest.approx(100.0 * 0.9985)


def test_rejections_become_failed_results():
    _, engine = _engine()
    insufficient = engine.place_order("A-EUR", OrderSide.BUY, OrderType.MARKET, 5_000.0)
    assert not insufficient.success
    assert "insufficient_quote" in insufficient.error

    no_base = engine.place_order("A-EUR", OrderSide.SELL, OrderType.MARKET, 1.0)
    assert not no_base.success
    assert "insufficient_base" in no_base.error

    limit = engine.place_order("A-EUR", OrderSide.BUY, OrderType.LIMIT, 10.0)
    assert not limit.success

    bogus = engine.place_order("A-EUR", "hold", "market", 10.0)
    assert not bogus.success
    assert engine.get_available_balance("EUR") == pytest.approx(1_000.0)


def test_symbol_rules_apply_lot_and_min_size():
    _, engine = _engine()
    engine.set_symbol_rules(
        "a-eur", SymbolRules(symbol="A-EUR", base_asset="A", quote_asset="EUR", min_size=0.5, lot_size=0.1)
    )
    result = engine.place_order("A-EUR", OrderSide.BUY, OrderType.MARKET, 125.0)
    assert result.success
    assert engine.get_available_balance("EUR") == pytest.approx(880.0)

    with pytest.raises(OrderRejected) as excinfo:
        engine.submit_order(SimulatedOrder(symbol="A-EUR", side=OrderSide.BUY, order_type=OrderType.MARKET, amount=40.0))
    assert excinfo.value.reason == "min_size"

    engine.set_symbol_rules("A-EUR", None)
    assert "A-EUR" not in engine.symbol_rules


def test_unknown_fill_and_balances():
    _, engine = _engine()
    assert engine.get_order_fill("missing") is None
    assert engine.get_available_balance("XYZ") == 0.0
    with pytest.raises(ValueError):
        PaperTradingEngine(market_data=None, initial_quote_balance=-1.0)
