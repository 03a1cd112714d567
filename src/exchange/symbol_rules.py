"""Helpers for parsing OKX spot instrument trading rules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SymbolRules:
    symbol: str
    base_asset: str = ""
    quote_asset: str = ""
    min_size: float = 0.0
    lot_size: float = 0.0
    tick_size: float = 0.0
    state: str = "live"

    @property
    def tradable(self) -> bool:
        return self.state == "live"


def parse_symbol_rules(instrument: Dict[str, Any]) -> Optional[SymbolRules]:
    """Extract `minSz`, `lotSz` and `tickSz` from a `/api/v5/public/instruments` row."""
    if not isinstance(instrument, dict):
        return None
    symbol = str(instrument.get("instId") or "").upper()
    if not symbol:
        return None

    def _f(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    base, _, quote = symbol.partition("-")
    return SymbolRules(
        symbol=symbol,
        base_asset=str(instrument.get("baseCcy") or base).upper(),
        quote_asset=str(instrument.get("quoteCcy") or quote).upper(),
        min_size=_f(instrument.get("minSz")),
        lot_size=_f(instrument.get("lotSz")),
        tick_size=_f(instrument.get("tickSz")),
        state=str(instrument.get("state") or "live").lower(),
    )
