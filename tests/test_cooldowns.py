import pytest

from helpers import FakeClock
from src.core.cooldowns import GLOBAL_KEY, CooldownKind, CooldownManager


def _manager(clock, **kwargs):
    return CooldownManager(clock=clock, **kwargs)


def test_fresh_symbol_is_free():
    manager = _manager(FakeClock())
    assert manager.can_buy("A-EUR")
    assert manager.can_sell("A-EUR")
    assert manager.global_remaining() == 0.0


def test_buy_arms_buy_sell_and_global():
    clock = FakeClock()
    manager = _manager(clock, buy_delay=600, sell_delay=60, global_cooldown=30)
    manager.record_buy("A-EUR")

    assert not manager.can_buy("B-EUR")
    assert not manager.can_sell("A-EUR")
    clock.advance(31)
    assert manager.can_buy("B-EUR")
    assert not manager.can_sell("A-EUR")
    clock.advance(30)
    assert manager.can_sell("A-EUR")
    assert not manager.can_buy("A-EUR")
    clock.advance(540)
    assert manager.can_buy("A-EUR")


def test_sell_lockout_blocks_rebuy_only():
    clock = FakeClock()
    manager = _manager(clock, buy_delay=0, sell_delay=0, global_cooldown=0, sell_lockout=300)
    manager.record_sell("A-EUR")
    assert not manager.can_buy("A-EUR")
    assert manager.can_sell("A-EUR")
    assert manager.can_buy("B-EUR")
    clock.advance(299)
    assert not manager.can_buy("A-EUR")
    clock.advance(1)
    assert manager.can_buy("A-EUR")


def test_lockout_reported_before_global(caplog):
    clock = FakeClock()
    manager = _manager(clock, global_cooldown=30, sell_lockout=300)
    manager.record_sell("A-EUR")
    with caplog.at_level("DEBUG"):
        assert not manager.can_buy("A-EUR")
    assert "Sell lockout" in caplog.text
    assert "Global cooldown" not in caplog.text


def test_zero_delays_disable_gates():
    manager = _manager(FakeClock(), buy_delay=0, sell_delay=0, global_cooldown=0, sell_lockout=0)
    manager.record_buy("A-EUR")
    manager.record_sell("A-EUR")
    assert manager.can_buy("A-EUR")
    assert manager.can_sell("A-EUR")
    assert manager.active_cooldowns() == []


def test_negative_duration_rejected():
    with pytest.raises(ValueError):
        CooldownManager(sell_lockout=-1)


def test_cleanup_keeps_live_records():
    clock = FakeClock()
    manager = _manager(clock, buy_delay=600, sell_delay=60, global_cooldown=30, sell_lockout=300)
    manager.record_buy("A-EUR")
    clock.advance(500)
    manager.record_sell("B-EUR")
    assert manager.cleanup(max_age=10) == 0
    assert manager.tracked_symbols() == ["A-EUR", "B-EUR"]
    clock.advance(200)
    # A-EUR is 700s old, past its 600s buy window.
    assert manager.cleanup(max_age=10) == 1
    assert manager.tracked_symbols() == ["B-EUR"]
    assert not manager.can_buy("B-EUR")


def test_cleanup_respects_max_age():
    clock = FakeClock()
    manager = _manager(clock, buy_delay=10, sell_delay=10, global_cooldown=0, sell_lockout=10)
    manager.record_sell("A-EUR")
    clock.advance(3_000)
    assert manager.cleanup(max_age=3_600) == 0
    clock.advance(601)
    assert manager.cleanup(max_age=3_600) == 1


def test_active_cooldowns_sorted_with_global():
    clock = FakeClock()
    manager = _manager(clock, buy_delay=600, sell_delay=60, global_cooldown=30, sell_lockout=300)
    manager.record_sell("A-EUR")
    infos = manager.active_cooldowns()
    assert [info.kind for info in infos] == [CooldownKind.GLOBAL, CooldownKind.SELL, CooldownKind.SELL_LOCKOUT]
    assert infos[0].symbol == GLOBAL_KEY
    assert manager.active_lockouts() == {"A-EUR": pytest.approx(300.0)}
    row = infos[-1].to_dict()
    assert row["kind"] == "sell_lockout"
    assert "no re-buy" in row["description"]
