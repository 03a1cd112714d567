"""Technical indicator helpers used by the entry filters."""

from __future__ import annotations

import logging
from statistics import mean
from typing import Any, Dict, Iterable, List, Optional, Sequence

NEUTRAL_RSI = 50.0


def compute_rsi(closes: Iterable[float], period: int = 14) -> List[float]:
    """Return a Relative Strength Index series for the provided closing prices.

    Entries before the first full period are 0.0.
    """
    closes_list = [float(c) for c in closes]
    if period < 1 or len(closes_list) < period + 1:
        return [0.0] * len(closes_list)

    gains: List[float] = []
    losses: List[float] = []
    for i in range(1, len(closes_list)):
        delta = closes_list[i] - closes_list[i - 1]
        gains.append(max(delta, 0.0))
        losses.append(abs(min(delta, 0.0)))

    avg_gain = mean(gains[:period])
    avg_loss = mean(losses[:period])
    rsis: List[float] = [0.0] * period

    def calc_rsi(avg_g: float, avg_l: float) -> float:
        if avg_l == 0:
            return 100.0
        rs = avg_g / avg_l
        return 100 - (100 / (1 + rs))

    rsis.append(calc_rsi(avg_gain, avg_loss))

    # Wilder smoothing
    for i in range(period + 1, len(closes_list)):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        rsis.append(calc_rsi(avg_gain, avg_loss))

    return rsis


def latest_rsi(closes: Sequence[float], period: int = 14) -> float:
    """Most recent RSI value, or a neutral 50.0 when there are not enough closes."""
    if period < 1 or len(closes) < period + 1:
        return NEUTRAL_RSI
    return compute_rsi(closes, period)[-1]


def is_rsi_overbought(
    closes: Optional[Sequence[float]],
    threshold: float = 70.0,
    period: int = 14,
    min_samples: int = 15,
) -> bool:
    """True when the latest RSI is strictly above `threshold`.

    Short windows shrink the period to `len(closes) - 1`; fewer than `min_samples`
    closes never block.
    """
    if not closes or len(closes) < max(2, int(min_samples)):
        return False
    actual_period = min(int(period), len(closes) - 1)
    rsi = latest_rsi(closes, actual_period)
    if rsi > float(threshold):
        logging.info("RSI overbought: %.2f > %.2f (%d samples)", rsi, threshold, len(closes))
        return True
    return False


def recent_high(klines: Optional[Sequence[Dict[str, Any]]]) -> Optional[float]:
    if not klines:
        return None
    return max(float(k["high"]) for k in klines)


def is_near_recent_high(
    price: float,
    klines: Optional[Sequence[Dict[str, Any]]],
    threshold: float = 0.95,
) -> bool:
    """True when `price` is above `threshold` times the highest high; missing data never blocks."""
    high = recent_high(klines)
    if high is None or high <= 0:
        return False
    near = float(price) > high * float(threshold)
    if near:
        logging.info("Price %.6f too close to recent high %.6f (%.1f%%)", price, high, price / high * 100.0)
    return near
