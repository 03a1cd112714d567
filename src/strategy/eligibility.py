"""Symbol eligibility gate (blacklist and name-pattern rules) for new entries.

Only *new BUY entries* are gated. Sells of existing positions are never blocked here.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

DEFAULT_BLACKLISTED_ASSETS = ("USDT", "USDC", "BUSD", "DAI", "TUSD", "USDP", "FRAX", "EURC")
DEFAULT_KNOWN_SHORT_ASSETS = ("OP", "ZK")
DEFAULT_KNOWN_NUMERIC_ASSETS = ("1INCH", "0X")


@dataclass(frozen=True)
class EligibilityVerdict:
    symbol: str
    allowed: bool
    rule: str

    def to_dict(self) -> Dict[str, Any]:
        return {"symbol": self.symbol, "allowed": self.allowed, "rule": self.rule}


def is_leveraged_token(asset: str) -> bool:
    """BTC3L, ETH5S: a digit followed by a trailing L or S."""
    if len(asset) < 2:
        return False
    return asset[-1] in ("L", "S") and asset[-2].isdigit()


class BlacklistManager:
    def __init__(
        self,
        *,
        assets: Optional[Iterable[str]] = None,
        symbols: Optional[Iterable[str]] = None,
        known_short_assets: Optional[Iterable[str]] = None,
        known_numeric_assets: Optional[Iterable[str]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._assets = {a.strip().upper() for a in (DEFAULT_BLACKLISTED_ASSETS if assets is None else assets) if a.strip()}
        self._symbols = {s.strip().upper() for s in (symbols or []) if s.strip()}
        self._known_short = {a.upper() for a in (DEFAULT_KNOWN_SHORT_ASSETS if known_short_assets is None else known_short_assets)}
        self._known_numeric = {
            a.upper() for a in (DEFAULT_KNOWN_NUMERIC_ASSETS if known_numeric_assets is None else known_numeric_assets)
        }
        logging.info("Blacklist initialized: %d assets, %d symbols", len(self._assets), len(self._symbols))

    def add_asset(self, asset: str) -> bool:
        asset = str(asset or "").strip().upper()
        if not asset:
            raise ValueError("Asset must not be empty.")
        with self._lock:
            if asset in self._assets:
                return False
            self._assets.add(asset)
        logging.info("Asset %s added to blacklist", asset)
        return True

    def remove_asset(self, asset: str) -> bool:
        asset = str(asset or "").strip().upper()
        with self._lock:
            if asset not in self._assets:
                return False
            self._assets.discard(asset)
        logging.info("Asset %s removed from blacklist", asset)
        return True

    def add_symbol(self, symbol: str) -> bool:
        symbol = str(symbol or "").strip().upper()
        if not symbol:
            raise ValueError("Symbol must not be empty.")
        with self._lock:
            if symbol in self._symbols:
                return False
            self._symbols.add(symbol)
        logging.info("Symbol %s added to blacklist", symbol)
        return True

    def remove_symbol(self, symbol: str) -> bool:
        symbol = str(symbol or "").strip().upper()
        with self._lock:
            if symbol not in self._symbols:
                return False
            self._symbols.discard(symbol)
        logging.info("Symbol %s removed from blacklist", symbol)
        return True

    def evaluate(self, symbol: str) -> EligibilityVerdict:
        raw = str(symbol or "").strip()
        if not raw:
            return EligibilityVerdict(symbol=raw, allowed=False, rule="empty_symbol")
        upper = raw.upper()
        asset = upper.split("-")[0]
        with self._lock:
            if upper in self._symbols:
                rule = "blacklisted_symbol"
            elif asset in self._assets:
                rule = "blacklisted_asset"
            elif is_leveraged_token(asset):
                rule = "leveraged_token"
            elif len(asset) <= 2 and asset not in self._known_short:
                rule = "short_name"
            elif any(ch.isdigit() for ch in asset) and asset not in self._known_numeric:
                rule = "contains_digits"
            else:
                rule = "ok"
        verdict = EligibilityVerdict(symbol=upper, allowed=rule == "ok", rule=rule)
        if not verdict.allowed:
            logging.debug("Symbol %s blocked: %s", upper, rule)
        return verdict

    def is_allowed(self, symbol: str) -> bool:
        return self.evaluate(symbol).allowed

    def filter_allowed(self, symbols: Iterable[str]) -> List[str]:
        return [s for s in symbols if self.is_allowed(s)]

    def status(self) -> Dict[str, Any]:
        with self._lock:
            assets = sorted(self._assets)
            symbols = sorted(self._symbols)
        return {
            "blacklisted_assets": len(assets),
            "blacklisted_symbols": len(symbols),
            "assets": assets,
            "symbols": symbols,
        }

    def log_status(self) -> None:
        status = self.status()
        logging.info("Blacklist: %d assets, %d symbols", status["blacklisted_assets"], status["blacklisted_symbols"])
        if status["assets"]:
            logging.info("Blacklisted assets: %s", ", ".join(status["assets"]))
        if status["symbols"]:
            logging.info("Blacklisted symbols: %s", ", ".join(status["symbols"]))
