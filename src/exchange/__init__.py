"""Exchange abstractions (public market data + paper execution)."""

from src.exchange.models import OrderResult, OrderSide, OrderType
from src.exchange.okx_client import OkxMarketDataClient
from src.exchange.paper_trading import PaperTradingEngine

__all__ = [
    "OkxMarketDataClient",
    "OrderResult",
    "OrderSide",
    "OrderType",
    "PaperTradingEngine",
]
