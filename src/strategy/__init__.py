"""Strategy layer: eligibility gate, entry filters, sizing and the sell margin policy."""

from .eligibility import BlacklistManager, EligibilityVerdict  # noqa: F401
from .sell_margin import SellMarginPolicy  # noqa: F401
from .volatility import VolatilityCheckResult, check_volatility_conditions, has_sufficient_volatility  # noqa: F401

__all__ = [
    "BlacklistManager",
    "EligibilityVerdict",
    "SellMarginPolicy",
    "VolatilityCheckResult",
    "check_volatility_conditions",
    "has_sufficient_volatility",
]
