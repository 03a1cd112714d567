import pytest

from helpers import FakeClock
from src.core.position_ledger import PositionLedger
from src.exchange.symbol_rules import SymbolRules
from src.strategy.sell_margin import SellMarginPolicy
from src.strategy.sizing import size_average_down, size_new_position


@pytest.mark.parametrize(
    "ratio, expected",
    [(0.0, 0.015), (0.24, 0.015), (0.25, 0.0125), (0.5, 0.01), (0.74, 0.01), (0.75, 0.0075), (1.0, 0.0075)],
)
def test_margin_for_ratio_steps(ratio, expected):
    assert SellMarginPolicy().margin_for_ratio(ratio) == pytest.approx(expected)


def test_margin_widens_as_fewer_positions_are_green():
    policy = SellMarginPolicy()
    margins = [policy.margin_for_ratio(r / 10) for r in range(11)]
    assert all(later <= earlier for earlier, later in zip(margins, margins[1:]))


def test_margin_none_for_empty_portfolio():
    policy = SellMarginPolicy()
    assert policy.margin(None, position_count=0, seconds_since_activity=10.0) is None


def test_stale_portfolio_uses_stale_margin():
    policy = SellMarginPolicy()
    assert policy.margin(0.0, position_count=3, seconds_since_activity=1800.0) == pytest.approx(0.0065)
    assert policy.margin(0.0, position_count=3, seconds_since_activity=None) == pytest.approx(0.0065)
    assert policy.margin(0.0, position_count=3, seconds_since_activity=60.0) == pytest.approx(0.015)


def test_small_portfolio_margin():
    policy = SellMarginPolicy(min_positions_for_ratio=3)
    assert policy.margin(1.0, position_count=2, seconds_since_activity=1.0) == pytest.approx(0.01)
    assert policy.margin(1.0, position_count=3, seconds_since_activity=1.0) == pytest.approx(0.0075)


def test_custom_table_validation():
    policy = SellMarginPolicy.from_table([[0.5, 0.02], [1.01, 0.005]], stale_margin=0.003)
    assert policy.margin_for_ratio(0.4) == pytest.approx(0.02)
    assert policy.to_dict()["steps"] == [[0.5, 0.02], [1.01, 0.005]]
    with pytest.raises(ValueError):
        SellMarginPolicy(steps=())
    with pytest.raises(ValueError):
        SellMarginPolicy.from_table([[1.0, 0.01], [0.5, 0.02]])


def test_margin_for_ledger():
    clock = FakeClock()
    ledger = PositionLedger(clock=clock, fee_haircut=0.0)
    policy = SellMarginPolicy()
    assert policy.margin_for(ledger) is None
    ledger.initialize("A-EUR", 100.0, 1.0, 100.0)
    ledger.initialize("B-EUR", 10.0, 1.0, 10.0)
    ledger.update_market_price("B-EUR", 9.0)
    assert policy.margin_for(ledger) == pytest.approx(0.01)
    clock.advance(1_801)
    assert policy.margin_for(ledger) == pytest.approx(0.0065)


def _rules(min_size):
    return SymbolRules(symbol="A-EUR", base_asset="A", quote_asset="EUR", min_size=min_size)


def test_size_new_position_from_min_size():
    size = size_new_position(_rules(1.0), 100.0)
    assert size.amount == pytest.approx(1.001 * 100.0 * 1.02)
    assert size.base_quantity == pytest.approx(1.001)
    assert not size.scaled_up


def test_small_orders_are_scaled_up():
    size = size_new_position(_rules(0.1), 10.0)
    assert size.scaled_up
    assert size.amount == pytest.approx(0.1 * 1.001 * 10.0 * 1.02 * 10.0)

    tiny = size_new_position(_rules(0.001), 10.0)
    assert tiny.amount == pytest.approx(10.02)


def test_size_new_position_requires_rules():
    assert size_new_position(None, 100.0) is None
    assert size_new_position(_rules(1.0), 0.0) is None
    assert size_new_position(_rules(0.0), 100.0) is None


def test_size_average_down_repeats_original_amount():
    assert size_average_down(100.0, 0) == pytest.approx(100.0)
    assert size_average_down(300.0, 2) == pytest.approx(100.0)
    assert size_average_down(0.0, 1) == 0.0
