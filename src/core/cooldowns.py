"""Per-symbol and global trading cooldowns with a post-sale buy lockout."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

GLOBAL_KEY = "GLOBAL"


class CooldownKind(str, Enum):
    BUY = "buy"
    SELL = "sell"
    SELL_LOCKOUT = "sell_lockout"
    GLOBAL = "global"


@dataclass
class CooldownRecord:
    last_buy: Optional[float] = None
    last_sell: Optional[float] = None
    sell_lockout_start: Optional[float] = None

    def latest(self) -> Optional[float]:
        stamps = [t for t in (self.last_buy, self.last_sell, self.sell_lockout_start) if t is not None]
        return max(stamps) if stamps else None


@dataclass(frozen=True)
class CooldownInfo:
    symbol: str
    kind: CooldownKind
    remaining_seconds: float

    @property
    def description(self) -> str:
        if self.kind is CooldownKind.BUY:
            return f"Buy cooldown: next buy in {self.remaining_seconds / 60:.1f} min"
        if self.kind is CooldownKind.SELL:
            return f"Sell cooldown: next sell in {self.remaining_seconds / 60:.1f} min"
        if self.kind is CooldownKind.SELL_LOCKOUT:
            return f"Sell lockout: no re-buy for {self.remaining_seconds / 60:.1f} min"
        return f"Global cooldown: all actions blocked for {self.remaining_seconds:.0f}s"

    def to_dict(self) -> Dict[str, object]:
        return {
            "symbol": self.symbol,
            "kind": self.kind.value,
            "remaining_seconds": round(self.remaining_seconds, 1),
            "description": self.description,
        }


class CooldownManager:
    """Timing gates for buys and sells.

    A buy needs: no sell lockout, no global cooldown and no per-symbol buy cooldown.
    A sell needs: no global cooldown and no per-symbol sell cooldown. The sell lockout
    never blocks a sell.
    """

    def __init__(
        self,
        *,
        buy_delay: float = 600.0,
        sell_delay: float = 60.0,
        global_cooldown: float = 30.0,
        sell_lockout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        for name, value in (
            ("buy_delay", buy_delay),
            ("sell_delay", sell_delay),
            ("global_cooldown", global_cooldown),
            ("sell_lockout", sell_lockout),
        ):
            if float(value) < 0:
                raise ValueError(f"{name} must be >= 0.")
        self.buy_delay = float(buy_delay)
        self.sell_delay = float(sell_delay)
        self.global_cooldown = float(global_cooldown)
        self.sell_lockout = float(sell_lockout)
        self._clock = clock
        self._records: Dict[str, CooldownRecord] = {}
        self._global_lock = threading.Lock()
        self._last_global_action: Optional[float] = None

    @staticmethod
    def _remaining(since: Optional[float], duration: float, now: float) -> float:
        if since is None:
            return 0.0
        return max(0.0, duration - (now - since))

    def _record(self, symbol: str) -> CooldownRecord:
        return self._records.setdefault(symbol, CooldownRecord())

    def global_remaining(self) -> float:
        now = self._clock()
        with self._global_lock:
            return self._remaining(self._last_global_action, self.global_cooldown, now)

    def can_buy(self, symbol: str) -> bool:
        now = self._clock()
        record = self._records.get(symbol)
        if record is not None:
            lockout = self._remaining(record.sell_lockout_start, self.sell_lockout, now)
            if lockout > 0:
                logging.debug("Sell lockout for %s active, %.1f min remaining", symbol, lockout / 60)
                return False
        with self._global_lock:
            global_left = self._remaining(self._last_global_action, self.global_cooldown, now)
        if global_left > 0:
            logging.debug("Global cooldown active, %.1fs remaining", global_left)
            return False
        if record is not None:
            buy_left = self._remaining(record.last_buy, self.buy_delay, now)
            if buy_left > 0:
                logging.debug("Buy cooldown for %s active, %.1fs remaining", symbol, buy_left)
                return False
        return True

    def can_sell(self, symbol: str) -> bool:
        now = self._clock()
        with self._global_lock:
            global_left = self._remaining(self._last_global_action, self.global_cooldown, now)
        if global_left > 0:
            logging.debug("Global cooldown active for sell, %.1fs remaining", global_left)
            return False
        record = self._records.get(symbol)
        if record is not None:
            sell_left = self._remaining(record.last_sell, self.sell_delay, now)
            if sell_left > 0:
                logging.debug("Sell cooldown for %s active, %.1fs remaining", symbol, sell_left)
                return False
        return True

    def record_buy(self, symbol: str) -> None:
        """Stamp buy and sell clocks (no immediate flip-sell) and the global clock."""
        now = self._clock()
        record = self._record(symbol)
        record.last_buy = now
        record.last_sell = now
        with self._global_lock:
            self._last_global_action = now
        logging.info("Buy cooldown for %s armed for %.0fs", symbol, self.buy_delay)

    def record_sell(self, symbol: str) -> None:
        now = self._clock()
        record = self._record(symbol)
        record.last_sell = now
        record.sell_lockout_start = now
        with self._global_lock:
            self._last_global_action = now
        logging.info("Sell cooldown for %s armed for %.0fs", symbol, self.sell_delay)
        logging.info("Sell lockout for %s armed for %.0fs, no re-buy until it expires", symbol, self.sell_lockout)

    def cleanup(self, max_age: float) -> int:
        """Drop symbols whose most recent timestamp is older than `max_age` seconds."""
        now = self._clock()
        # A record still inside one of its windows is kept even if max_age is short.
        longest = max(self.buy_delay, self.sell_delay, self.sell_lockout)
        cutoff = now - max(float(max_age), longest)
        stale = [
            symbol
            for symbol, record in list(self._records.items())
            if record.latest() is None or record.latest() < cutoff
        ]
        for symbol in stale:
            self._records.pop(symbol, None)
        logging.debug("Cooldown cleanup removed %d symbols", len(stale))
        return len(stale)

    def active_lockouts(self) -> Dict[str, float]:
        now = self._clock()
        result: Dict[str, float] = {}
        for symbol, record in list(self._records.items()):
            remaining = self._remaining(record.sell_lockout_start, self.sell_lockout, now)
            if remaining > 0:
                result[symbol] = remaining
        return result

    def active_cooldowns(self) -> List[CooldownInfo]:
        """All running cooldowns, shortest remaining first."""
        now = self._clock()
        infos: List[CooldownInfo] = []
        for symbol, record in list(self._records.items()):
            for kind, since, duration in (
                (CooldownKind.BUY, record.last_buy, self.buy_delay),
                (CooldownKind.SELL, record.last_sell, self.sell_delay),
                (CooldownKind.SELL_LOCKOUT, record.sell_lockout_start, self.sell_lockout),
            ):
                remaining = self._remaining(since, duration, now)
                if remaining > 0:
                    infos.append(CooldownInfo(symbol=symbol, kind=kind, remaining_seconds=remaining))
        global_left = self.global_remaining()
        if global_left > 0:
            infos.append(CooldownInfo(symbol=GLOBAL_KEY, kind=CooldownKind.GLOBAL, remaining_seconds=global_left))
        return sorted(infos, key=lambda info: info.remaining_seconds)

    def tracked_symbols(self) -> List[str]:
        return sorted(self._records)
