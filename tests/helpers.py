"""Shared fakes for the test-suite (clock and market data)."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from src.exchange.symbol_rules import SymbolRules


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


def kline(open_: float, high: float, low: float, close: float, volume: float = 1.0) -> Dict[str, Any]:
    return {"open_time": "", "open": open_, "high": high, "low": low, "close": close, "volume": volume}


class FakeMarket:
    """Market data collaborator with controllable prices.

    Minute candles swing around the current price (volatile, up-candles, neutral RSI);
    daily candles put the recent high far above the price.
    """

    def __init__(
        self,
        prices: Dict[str, float],
        *,
        min_size: float = 1.0,
        symbols: Optional[Iterable[str]] = None,
    ) -> None:
        self.prices = dict(prices)
        self.min_size = min_size
        self.symbols = list(symbols) if symbols is not None else list(prices)
        self.rising: set = set()
        self.kline_calls: List[tuple] = []
        self.ticker_calls: List[str] = []

    def get_ticker(self, symbol: str) -> float:
        self.ticker_calls.append(symbol)
        return self.prices[symbol]

    def get_klines(self, symbol: str, interval: str, start: Any, end: Any) -> List[Dict[str, Any]]:
        self.kline_calls.append((symbol, interval))
        price = self.prices[symbol]
        if interval == "1d":
            return [kline(price, price * 2.0, price * 0.5, price) for _ in range(30)]
        if symbol in self.rising:
            return [kline(price * 0.9 + i * 0.001, price * 1.01, price * 0.89, price * 0.9 + i * 0.01) for i in range(20)]
        candles = []
        for i in range(20):
            close = price if i % 2 == 0 else price * 0.995
            candles.append(kline(price * 0.99, price * 1.01, price * 0.98, close))
        return candles

    def list_symbols(self, quote: str) -> List[str]:
        return [s for s in self.symbols if s.endswith(f"-{quote}")]

    def get_symbol_rules(self, symbol: str) -> Optional[SymbolRules]:
        base, _, quote = symbol.partition("-")
        return SymbolRules(symbol=symbol, base_asset=base, quote_asset=quote, min_size=self.min_size)
