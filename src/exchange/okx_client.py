"""Read-only wrapper around OKX public market data endpoints."""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from src.exchange.errors import MarketDataError
from src.exchange.symbol_rules import SymbolRules, parse_symbol_rules

_BAR_ALIASES = {"1h": "1H", "2h": "2H", "4h": "4H", "6h": "6H", "12h": "12H", "1d": "1D", "1w": "1W"}


class OkxMarketDataClient:
    """Ticker, candles and instrument rules from OKX; no credentials, no orders.

    With `sample_mode` the client never touches the network and serves a
    deterministic random walk, which is handy for offline paper runs.
    """

    BASE_URL = "https://www.okx.com"
    CANDLE_PAGE_LIMIT = 100

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        sample_mode: bool = False,
        max_retries: int = 3,
        timeout_seconds: float = 10.0,
        retry_backoff_seconds: float = 0.5,
        max_candle_pages: int = 50,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.sample_mode = sample_mode
        self.max_retries = max(1, int(max_retries))
        self.timeout_seconds = timeout_seconds
        self.retry_backoff_seconds = float(retry_backoff_seconds)
        self.max_candle_pages = max(1, int(max_candle_pages))
        self._http = http_client
        self._rules_cache: Dict[str, SymbolRules] = {}
        self._sample_prices: Dict[str, float] = {}

    # ------------------------------------------------------------------ #
    # Market data collaborator interface
    # ------------------------------------------------------------------ #
    def get_ticker(self, symbol: str) -> float:
        symbol = symbol.upper()
        if self.sample_mode:
            return self._sample_price(symbol)
        rows = self._get("/api/v5/market/ticker", {"instId": symbol})
        if not rows:
            raise MarketDataError(f"No ticker returned for {symbol}.")
        return float(rows[0]["last"])

    def get_klines(
        self,
        symbol: str,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> List[Dict[str, Any]]:
        """Candles between `start` and `end`, oldest first."""
        symbol = symbol.upper()
        bar = _BAR_ALIASES.get(interval, interval)
        if self.sample_mode:
            return self._generate_sample_klines(symbol, interval, start, end)

        start_ms = self._to_ms(start)
        cursor = self._to_ms(end) + 1
        candles: Dict[int, Dict[str, Any]] = {}
        for _page in range(self.max_candle_pages):
            rows = self._get(
                "/api/v5/market/history-candles",
                {"instId": symbol, "bar": bar, "after": str(cursor), "limit": str(self.CANDLE_PAGE_LIMIT)},
            )
            if not rows:
                break
            for row in rows:
                ts = int(row[0])
                if ts >= start_ms:
                    candles[ts] = self._normalize_kline(row)
            oldest = min(int(row[0]) for row in rows)
            if oldest <= start_ms or len(rows) < self.CANDLE_PAGE_LIMIT:
                break
            cursor = oldest
        return [candles[ts] for ts in sorted(candles)]

    def list_symbols(self, quote: str = "EUR") -> List[str]:
        quote = quote.upper()
        if self.sample_mode:
            return [f"{base}-{quote}" for base in ("BTC", "ETH", "SOL", "ADA", "XRP", "DOT", "LINK", "USDT")]
        rules = self._load_instruments()
        return sorted(r.symbol for r in rules.values() if r.quote_asset == quote and r.tradable)

    def get_symbol_rules(self, symbol: str) -> Optional[SymbolRules]:
        symbol = symbol.upper()
        if self.sample_mode:
            base, _, quote = symbol.partition("-")
            return SymbolRules(symbol=symbol, base_asset=base, quote_asset=quote, min_size=0.0001, lot_size=0.00000001)
        if symbol not in self._rules_cache:
            self._load_instruments()
        return self._rules_cache.get(symbol)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _load_instruments(self) -> Dict[str, SymbolRules]:
        rows = self._get("/api/v5/public/instruments", {"instType": "SPOT"})
        parsed = [parse_symbol_rules(row) for row in rows]
        self._rules_cache = {r.symbol: r for r in parsed if r is not None}
        logging.info("Loaded %d OKX spot instruments.", len(self._rules_cache))
        return self._rules_cache

    def _get(self, path: str, params: Dict[str, str]) -> List[Any]:
        url = f"{self.base_url}{path}"
        last_exc: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                if self._http is not None:
                    response = self._http.get(url, params=params, timeout=self.timeout_seconds)
                else:
                    response = httpx.get(url, params=params, timeout=self.timeout_seconds)
                response.raise_for_status()
                payload = response.json()
                if str(payload.get("code", "0")) != "0":
                    raise MarketDataError(f"OKX error {payload.get('code')}: {payload.get('msg')}")
                return list(payload.get("data") or [])
            except (httpx.HTTPError, MarketDataError, ValueError) as exc:
                last_exc = exc
                logging.warning("OKX request %s failed (attempt %d/%d): %s", path, attempt, self.max_retries, exc)
                if attempt < self.max_retries and self.retry_backoff_seconds > 0:
                    time.sleep(self.retry_backoff_seconds * attempt)
        raise MarketDataError(f"Unable to fetch {path} after {self.max_retries} attempts: {last_exc}") from last_exc

    @staticmethod
    def _to_ms(value: datetime) -> int:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    @staticmethod
    def _normalize_kline(raw: List[Any]) -> Dict[str, Any]:
        """Convert an OKX candle row `[ts, o, h, l, c, vol, ...]` into a dict."""
        open_time = datetime.fromtimestamp(int(raw[0]) / 1000, tz=timezone.utc)
        return {
            "open_time": open_time.isoformat(),
            "open": float(raw[1]),
            "high": float(raw[2]),
            "low": float(raw[3]),
            "close": float(raw[4]),
            "volume": float(raw[5]),
        }

    def _sample_price(self, symbol: str) -> float:
        price = self._sample_prices.get(symbol)
        if price is None:
            price = random.Random(symbol).uniform(1.0, 500.0)
        price = max(0.0001, price * (1.0 + random.uniform(-0.01, 0.01)))
        self._sample_prices[symbol] = price
        return round(price, 6)

    def _generate_sample_klines(self, symbol: str, interval: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Deterministic pseudo-candles for offline development/testing."""
        delta = self._interval_to_timedelta(interval)
        steps = max(2, min(500, int((end - start) / delta)))
        rng = random.Random(f"{symbol}:{interval}")
        price = self._sample_prices.get(symbol) or rng.uniform(1.0, 500.0)
        candles: List[Dict[str, Any]] = []
        for i in range(steps):
            open_time = start + delta * i
            change = price * rng.uniform(-0.01, 0.01)
            high = price + abs(change) * 0.6
            low = price - abs(change) * 0.6
            close = max(low, min(high, price + change))
            candles.append(
                {
                    "open_time": open_time.isoformat(),
                    "open": round(price, 6),
                    "high": round(high, 6),
                    "low": round(low, 6),
                    "close": round(close, 6),
                    "volume": round(rng.uniform(1000, 2000), 2),
                }
            )
            price = close
        return candles

    @staticmethod
    def _interval_to_timedelta(interval: str) -> timedelta:
        unit = interval[-1].lower()
        value = int(interval[:-1] or 1)
        if unit == "m":
            return timedelta(minutes=value)
        if unit == "h":
            return timedelta(hours=value)
        if unit == "d":
            return timedelta(days=value)
        if unit == "w":
            return timedelta(weeks=value)
        raise ValueError(f"Unsupported interval: {interval}")
