"""Range volatility and candle-direction checks over OHLC samples."""

from __future__ import annotations

from dataclasses import dataclass
from statistics import mean
from typing import Any, Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class VolatilityCheckResult:
    meets_volatility: bool
    meets_distribution: bool
    volatility_percent: float
    average_price: float
    up_closes: int
    down_closes: int
    confirmation_up_closes: int = 0
    confirmation_down_closes: int = 0

    @property
    def passed(self) -> bool:
        return self.meets_volatility and self.meets_distribution

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meets_volatility": self.meets_volatility,
            "meets_distribution": self.meets_distribution,
            "volatility_percent": self.volatility_percent,
            "average_price": self.average_price,
            "up_closes": self.up_closes,
            "down_closes": self.down_closes,
            "confirmation_up_closes": self.confirmation_up_closes,
            "confirmation_down_closes": self.confirmation_down_closes,
            "passed": self.passed,
        }


def _count_directions(klines: Sequence[Dict[str, Any]], window: int) -> Tuple[int, int]:
    """Count up and down candles (close vs open) among the newest `window` samples."""
    up = down = 0
    recent = list(klines)[-window:] if window > 0 else []
    for kline in recent:
        open_ = float(kline["open"])
        close = float(kline["close"])
        if close > open_:
            up += 1
        elif close < open_:
            down += 1
    return up, down


def _distribution_ok(up: int, down: int, strict: bool) -> bool:
    return up > down if strict else up >= down


def check_volatility_conditions(
    klines: Sequence[Dict[str, Any]],
    min_volatility_percent: float,
    *,
    distribution_window: int = 5,
    strict_distribution: bool = False,
    confirmation_klines: Optional[Sequence[Dict[str, Any]]] = None,
    require_confirmation: bool = False,
) -> VolatilityCheckResult:
    """Range check `(max high - min low) / mean typical price * 100 >= min` plus a direction check.

    Samples are ordered oldest first.
    """
    if klines is None or len(klines) < 2:
        raise ValueError("At least 2 klines are required for a volatility check.")

    highs: List[float] = [float(k["high"]) for k in klines]
    lows: List[float] = [float(k["low"]) for k in klines]
    typical = [(float(k["high"]) + float(k["low"]) + float(k["close"])) / 3.0 for k in klines]
    average_price = mean(typical)
    if average_price <= 0:
        raise ValueError("Average price must be positive.")
    volatility_percent = (max(highs) - min(lows)) / average_price * 100.0

    up, down = _count_directions(klines, distribution_window)
    meets_distribution = _distribution_ok(up, down, strict_distribution)

    conf_up = conf_down = 0
    if confirmation_klines:
        conf_up, conf_down = _count_directions(confirmation_klines, distribution_window)
        if require_confirmation:
            meets_distribution = meets_distribution and _distribution_ok(conf_up, conf_down, strict_distribution)

    return VolatilityCheckResult(
        meets_volatility=volatility_percent >= float(min_volatility_percent),
        meets_distribution=meets_distribution,
        volatility_percent=volatility_percent,
        average_price=average_price,
        up_closes=up,
        down_closes=down,
        confirmation_up_closes=conf_up,
        confirmation_down_closes=conf_down,
    )


def has_sufficient_volatility(
    klines: Sequence[Dict[str, Any]],
    min_volatility_percent: float,
    **kwargs: Any,
) -> bool:
    return check_volatility_conditions(klines, min_volatility_percent, **kwargs).passed
