"""Entry point for the EUR spot trading bot (paper execution)."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict

from src.core.budget import BudgetEngine
from src.core.cooldowns import CooldownManager
from src.core.orchestrator import TradingOrchestrator
from src.core.position_ledger import PositionLedger
from src.core.settings import BotSettings
from src.core.utils import load_config, setup_logging
from src.exchange.okx_client import OkxMarketDataClient
from src.exchange.paper_trading import PaperTradingEngine
from src.frontend.server import create_app
from src.strategy.eligibility import BlacklistManager


def main() -> None:
    """Main entry point that wires together config, core components and the loop."""
    config = _load_config()
    setup_logging(config)
    settings = BotSettings.from_config(config)

    exchange_cfg = config.get("exchange", {}) or {}
    market_data = OkxMarketDataClient(
        base_url=exchange_cfg.get("base_url"),
        sample_mode=bool(exchange_cfg.get("use_sample_data", False)),
        max_retries=int(exchange_cfg.get("max_retries", 3) or 3),
        timeout_seconds=float(exchange_cfg.get("timeout_seconds", 10.0) or 10.0),
    )

    paper_cfg = config.get("paper", {}) or {}
    execution = PaperTradingEngine(
        market_data=market_data,
        initial_quote_balance=float(paper_cfg.get("initial_quote_balance", 1_000.0)),
        quote_asset=settings.quote_asset,
        fee_rate=float(paper_cfg.get("fee_rate", 0.001)),
        slippage=float(paper_cfg.get("slippage", 0.0005)),
        spread_bps=float(paper_cfg.get("spread_bps", 5.0)),
    )
    for symbol in settings.symbols:
        try:
            execution.set_symbol_rules(symbol, market_data.get_symbol_rules(symbol))
        except Exception:
            logging.exception("Symbol rules for %s unavailable; paper fills skip min-size checks.", symbol)

    filters = settings.filters
    blacklist = BlacklistManager(
        assets=filters.blacklisted_assets,
        symbols=filters.blacklisted_symbols,
        known_short_assets=filters.known_short_assets,
        known_numeric_assets=filters.known_numeric_assets,
    )
    ledger = PositionLedger(
        step_pct=settings.average_down.step_pct,
        max_average_downs=settings.average_down.max_count,
        average_down_pause_seconds=settings.average_down.pause_seconds,
        average_down_enabled=settings.average_down.enabled,
        fee_haircut=settings.average_down.fee_haircut,
        sell_target_margin=settings.sell.sell_target_margin,
    )
    budget = BudgetEngine(settings.budget.protection, emergency_loss_pct=settings.budget.emergency_loss_pct)
    cooldowns = CooldownManager(
        buy_delay=settings.cooldowns.buy_delay_seconds,
        sell_delay=settings.cooldowns.sell_delay_seconds,
        global_cooldown=settings.cooldowns.global_cooldown_seconds,
        sell_lockout=settings.cooldowns.sell_lockout_seconds,
    )

    orchestrator = TradingOrchestrator(
        settings=settings,
        market_data=market_data,
        execution=execution,
        ledger=ledger,
        budget=budget,
        cooldowns=cooldowns,
        blacklist=blacklist,
    )

    frontend_thread: threading.Thread | None = None
    if config.get("frontend", {}).get("enabled", False):
        frontend_thread = _start_frontend(
            orchestrator=orchestrator,
            blacklist=blacklist,
            frontend_cfg=config.get("frontend", {}),
            config=config,
        )

    try:
        orchestrator.start()
    except KeyboardInterrupt:
        logging.info("Keyboard interrupt received; stopping services.")
    finally:
        orchestrator.stop()
        budget.log_status()
        if frontend_thread:
            logging.info("Frontend server thread will exit when main process ends.")


def _load_config() -> Dict[str, Any]:
    """Load YAML configuration from config.yaml or fallback to sample."""
    return load_config(Path("src/config/config.yaml"), fallback=Path("src/config/config.sample.yaml"))


def _start_frontend(
    *,
    orchestrator: TradingOrchestrator,
    blacklist: BlacklistManager,
    frontend_cfg: Dict[str, Any],
    config: Dict[str, Any],
) -> threading.Thread:
    """Start the FastAPI status server in a background thread."""
    import uvicorn

    app = create_app(orchestrator=orchestrator, blacklist=blacklist, config=config)
    host = frontend_cfg.get("host", "127.0.0.1")
    port = frontend_cfg.get("port", 8000)

    def _run() -> None:
        uvicorn.run(app, host=host, port=port, log_level="info")

    thread = threading.Thread(target=_run, name="frontend-server", daemon=True)
    thread.start()
    logging.info("Frontend server running at http://%s:%s", host, port)
    return thread


if __name__ == "__main__":
    main()
