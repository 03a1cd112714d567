"""Utility helpers (timestamps, symbol parsing, config loading, locking)."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import yaml


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def load_config(path: Path, *, fallback: Optional[Path] = None) -> Dict[str, Any]:
    """Load YAML configuration; fall back to the sample file when `path` is missing."""
    config_path = path
    if not config_path.exists():
        if fallback is None:
            raise FileNotFoundError(f"Configuration file not found: {path}")
        logging.warning("%s not found, falling back to %s.", path, fallback)
        config_path = fallback
    with config_path.open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def setup_logging(config: Dict[str, Any]) -> None:
    """Configure root logging from the `general.log_level` setting."""
    level_name = str((config.get("general", {}) or {}).get("log_level", "INFO") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT, force=True)


def utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def base_asset(symbol: str) -> str:
    """Return the base leg of a dash-separated symbol ("BTC-EUR" -> "BTC")."""
    return str(symbol or "").strip().upper().split("-")[0]


class ReadWriteLock:
    """Many concurrent readers or one writer; writers are not starved by new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
