"""Adaptive sell margin driven by the portfolio-wide green ratio.

The green ratio is the fraction of open positions whose last observed price is at
or above their original purchase price. The fewer positions are green, the wider
the margin a position has to clear above its nominal target before it may be sold.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

# (upper bound of green ratio, margin); checked in order, last entry is the fallback.
DEFAULT_MARGIN_STEPS: Tuple[Tuple[float, float], ...] = (
    (0.25, 0.015),
    (0.5, 0.0125),
    (0.75, 0.01),
    (1.01, 0.0075),
)


@dataclass(frozen=True)
class SellMarginPolicy:
    steps: Tuple[Tuple[float, float], ...] = DEFAULT_MARGIN_STEPS
    stale_margin: float = 0.0065
    stale_after_seconds: float = 1800.0
    # Below this many positions the ratio is too noisy and `small_portfolio_margin` applies.
    min_positions_for_ratio: int = 0
    small_portfolio_margin: float = 0.01

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("SellMarginPolicy needs at least one margin step.")
        bounds = [bound for bound, _ in self.steps]
        if bounds != sorted(bounds):
            raise ValueError("Margin step bounds must be ascending.")

    @classmethod
    def from_table(cls, table: Sequence[Sequence[float]], **kwargs: Any) -> "SellMarginPolicy":
        steps = tuple((float(bound), float(margin)) for bound, margin in table)
        return cls(steps=steps, **kwargs)

    def margin_for_ratio(self, green_ratio: float) -> float:
        for bound, margin in self.steps:
            if green_ratio < bound:
                return margin
        return self.steps[-1][1]

    def margin(
        self,
        green_ratio: Optional[float],
        *,
        position_count: int,
        seconds_since_activity: Optional[float],
    ) -> Optional[float]:
        """Margin for `can_sell`; None means "sell at the plain target"."""
        if position_count <= 0 or green_ratio is None:
            return None
        if seconds_since_activity is None or seconds_since_activity >= self.stale_after_seconds:
            return self.stale_margin
        if position_count < self.min_positions_for_ratio:
            return self.small_portfolio_margin
        return self.margin_for_ratio(green_ratio)

    def margin_for(self, ledger: Any) -> Optional[float]:
        return self.margin(
            ledger.green_ratio(),
            position_count=ledger.count(),
            seconds_since_activity=ledger.seconds_since_activity(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [list(step) for step in self.steps],
            "stale_margin": self.stale_margin,
            "stale_after_seconds": self.stale_after_seconds,
            "min_positions_for_ratio": self.min_positions_for_ratio,
            "small_portfolio_margin": self.small_portfolio_margin,
        }
