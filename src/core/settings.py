"""Typed views over the YAML configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from src.core.budget import FullProtection, ProtectionMode, parse_protection_mode
from src.strategy.eligibility import DEFAULT_BLACKLISTED_ASSETS, DEFAULT_KNOWN_NUMERIC_ASSETS, DEFAULT_KNOWN_SHORT_ASSETS
from src.strategy.sell_margin import DEFAULT_MARGIN_STEPS


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping.")
    return value


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip().upper() for part in value.split(",") if part.strip()]
    return [str(v).strip().upper() for v in value if str(v).strip()]


@dataclass(frozen=True)
class CooldownSettings:
    buy_delay_seconds: float = 600.0
    sell_delay_seconds: float = 60.0
    global_cooldown_seconds: float = 30.0
    sell_lockout_seconds: float = 300.0
    cleanup_every_cycles: int = 10
    cleanup_max_age_seconds: float = 3600.0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "CooldownSettings":
        return cls(
            buy_delay_seconds=float(cfg.get("buy_delay_seconds", cls.buy_delay_seconds)),
            sell_delay_seconds=float(cfg.get("sell_delay_seconds", cls.sell_delay_seconds)),
            global_cooldown_seconds=float(cfg.get("global_cooldown_seconds", cls.global_cooldown_seconds)),
            sell_lockout_seconds=float(cfg.get("sell_lockout_seconds", cls.sell_lockout_seconds)),
            cleanup_every_cycles=max(1, int(cfg.get("cleanup_every_cycles", cls.cleanup_every_cycles))),
            cleanup_max_age_seconds=float(cfg.get("cleanup_max_age_seconds", cls.cleanup_max_age_seconds)),
        )


@dataclass(frozen=True)
class BudgetSettings:
    protection: ProtectionMode = field(default_factory=FullProtection)
    min_available_budget: float = 50.0
    max_trading_budget: Optional[float] = None
    emergency_loss_pct: float = 90.0
    emergency_liquidation: bool = False

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "BudgetSettings":
        max_budget = cfg.get("max_trading_budget")
        return cls(
            protection=parse_protection_mode(cfg.get("protection")),
            min_available_budget=float(cfg.get("min_available_budget", cls.min_available_budget)),
            max_trading_budget=float(max_budget) if max_budget not in (None, "", 0) else None,
            emergency_loss_pct=float(cfg.get("emergency_loss_pct", cls.emergency_loss_pct)),
            emergency_liquidation=bool(cfg.get("emergency_liquidation", cls.emergency_liquidation)),
        )


@dataclass(frozen=True)
class AverageDownSettings:
    enabled: bool = True
    step_pct: float = 2.0
    max_count: int = 3
    pause_seconds: float = 300.0
    fee_haircut: float = 0.001

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "AverageDownSettings":
        return cls(
            enabled=bool(cfg.get("enabled", cls.enabled)),
            step_pct=float(cfg.get("step_pct", cls.step_pct)),
            max_count=int(cfg.get("max_count", cls.max_count)),
            pause_seconds=float(cfg.get("pause_seconds", cls.pause_seconds)),
            fee_haircut=float(cfg.get("fee_haircut", cls.fee_haircut)),
        )


@dataclass(frozen=True)
class FilterSettings:
    blacklisted_assets: Tuple[str, ...] = DEFAULT_BLACKLISTED_ASSETS
    blacklisted_symbols: Tuple[str, ...] = ()
    known_short_assets: Tuple[str, ...] = DEFAULT_KNOWN_SHORT_ASSETS
    known_numeric_assets: Tuple[str, ...] = DEFAULT_KNOWN_NUMERIC_ASSETS
    kline_interval: str = "1m"
    min_volatility_percent: float = 1.0
    volatility_lookback_minutes: int = 60
    distribution_window: int = 5
    strict_distribution: bool = False
    require_confirmation: bool = False
    confirmation_lookback_minutes: int = 15
    confirmation_interval: str = "5m"
    scan_top_n: int = 20
    rsi_enabled: bool = True
    rsi_threshold: float = 70.0
    rsi_period: int = 14
    rsi_lookback_minutes: int = 30
    rsi_min_samples: int = 15
    recent_high_enabled: bool = True
    recent_high_threshold: float = 0.95
    recent_high_days: int = 30
    recent_high_interval: str = "1d"

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "FilterSettings":
        blacklist = cfg.get("blacklist") or {}
        assets = blacklist.get("assets")
        known_short = cfg.get("known_short_assets")
        known_numeric = cfg.get("known_numeric_assets")
        return cls(
            blacklisted_assets=tuple(_str_list(assets)) if assets is not None else DEFAULT_BLACKLISTED_ASSETS,
            blacklisted_symbols=tuple(_str_list(blacklist.get("symbols"))),
            known_short_assets=tuple(_str_list(known_short)) if known_short is not None else DEFAULT_KNOWN_SHORT_ASSETS,
            known_numeric_assets=(
                tuple(_str_list(known_numeric)) if known_numeric is not None else DEFAULT_KNOWN_NUMERIC_ASSETS
            ),
            kline_interval=str(cfg.get("kline_interval", cls.kline_interval)),
            min_volatility_percent=float(cfg.get("min_volatility_percent", cls.min_volatility_percent)),
            volatility_lookback_minutes=int(cfg.get("volatility_lookback_minutes", cls.volatility_lookback_minutes)),
            distribution_window=int(cfg.get("distribution_window", cls.distribution_window)),
            strict_distribution=bool(cfg.get("strict_distribution", cls.strict_distribution)),
            require_confirmation=bool(cfg.get("require_confirmation", cls.require_confirmation)),
            confirmation_lookback_minutes=int(cfg.get("confirmation_lookback_minutes", cls.confirmation_lookback_minutes)),
            confirmation_interval=str(cfg.get("confirmation_interval", cls.confirmation_interval)),
            scan_top_n=max(1, int(cfg.get("scan_top_n", cls.scan_top_n))),
            rsi_enabled=bool(cfg.get("rsi_enabled", cls.rsi_enabled)),
            rsi_threshold=float(cfg.get("rsi_threshold", cls.rsi_threshold)),
            rsi_period=int(cfg.get("rsi_period", cls.rsi_period)),
            rsi_lookback_minutes=int(cfg.get("rsi_lookback_minutes", cls.rsi_lookback_minutes)),
            rsi_min_samples=int(cfg.get("rsi_min_samples", cls.rsi_min_samples)),
            recent_high_enabled=bool(cfg.get("recent_high_enabled", cls.recent_high_enabled)),
            recent_high_threshold=float(cfg.get("recent_high_threshold", cls.recent_high_threshold)),
            recent_high_days=int(cfg.get("recent_high_days", cls.recent_high_days)),
            recent_high_interval=str(cfg.get("recent_high_interval", cls.recent_high_interval)),
        )


@dataclass(frozen=True)
class SellSettings:
    sell_target_margin: float = 0.005
    adaptive_margin_enabled: bool = True
    margin_steps: Tuple[Tuple[float, float], ...] = DEFAULT_MARGIN_STEPS
    stale_margin: float = 0.0065
    stale_after_seconds: float = 1800.0
    min_positions_for_ratio: int = 0
    small_portfolio_margin: float = 0.01

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "SellSettings":
        steps = cfg.get("margin_steps")
        return cls(
            sell_target_margin=float(cfg.get("sell_target_margin", cls.sell_target_margin)),
            adaptive_margin_enabled=bool(cfg.get("adaptive_margin_enabled", cls.adaptive_margin_enabled)),
            margin_steps=(
                tuple((float(bound), float(margin)) for bound, margin in steps) if steps else DEFAULT_MARGIN_STEPS
            ),
            stale_margin=float(cfg.get("stale_margin", cls.stale_margin)),
            stale_after_seconds=float(cfg.get("stale_after_seconds", cls.stale_after_seconds)),
            min_positions_for_ratio=int(cfg.get("min_positions_for_ratio", cls.min_positions_for_ratio)),
            small_portfolio_margin=float(cfg.get("small_portfolio_margin", cls.small_portfolio_margin)),
        )


@dataclass(frozen=True)
class BotSettings:
    quote_asset: str = "EUR"
    symbols: Tuple[str, ...] = ()
    cycle_interval_seconds: float = 30.0
    min_position_value: float = 10.02
    fill_lookup_attempts: int = 3
    fill_lookup_delay_seconds: float = 1.0
    cooldowns: CooldownSettings = field(default_factory=CooldownSettings)
    budget: BudgetSettings = field(default_factory=BudgetSettings)
    average_down: AverageDownSettings = field(default_factory=AverageDownSettings)
    filters: FilterSettings = field(default_factory=FilterSettings)
    sell: SellSettings = field(default_factory=SellSettings)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "BotSettings":
        """Build settings from the parsed YAML; missing keys fall back to defaults."""
        trading = _section(config, "trading")
        settings = cls(
            quote_asset=str(trading.get("quote_asset", cls.quote_asset) or cls.quote_asset).upper(),
            symbols=tuple(_str_list(trading.get("symbols"))),
            cycle_interval_seconds=float(trading.get("cycle_interval_seconds", cls.cycle_interval_seconds)),
            min_position_value=float(trading.get("min_position_value", cls.min_position_value)),
            fill_lookup_attempts=max(1, int(trading.get("fill_lookup_attempts", cls.fill_lookup_attempts))),
            fill_lookup_delay_seconds=float(trading.get("fill_lookup_delay_seconds", cls.fill_lookup_delay_seconds)),
            cooldowns=CooldownSettings.from_config(_section(config, "cooldowns")),
            budget=BudgetSettings.from_config(_section(config, "budget")),
            average_down=AverageDownSettings.from_config(_section(config, "average_down")),
            filters=FilterSettings.from_config(_section(config, "filters")),
            sell=SellSettings.from_config(_section(config, "sell")),
        )
        if settings.cycle_interval_seconds <= 0:
            raise ValueError("trading.cycle_interval_seconds must be > 0.")
        return settings
