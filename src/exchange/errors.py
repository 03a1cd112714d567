"""Shared exchange/order error types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class OrderRejected(Exception):
    """Raised by the paper engine when an order breaks a deterministic constraint.

    Attributes
    ----------
    reason:
        Short machine-friendly reason (e.g. "min_size", "insufficient_quote", "insufficient_base").
    details:
        Optional structured context for logs.
    """

    reason: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        base = str(self.reason or "rejected")
        if self.details:
            return f"{base}: {self.details}"
        return base


class MarketDataError(RuntimeError):
    """Market data could not be fetched after all retries."""
