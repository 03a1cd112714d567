"""REST API endpoints for positions, budget, cooldowns and blacklist maintenance."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException


def attach_api_routes(
    app: FastAPI,
    *,
    orchestrator: Optional[Any],
    blacklist: Optional[Any],
    config: Dict[str, Any],
) -> None:
    router = APIRouter(prefix="/api")

    @router.get("/positions")
    async def positions() -> Dict[str, Any]:
        _require(orchestrator, "Orchestrator not configured.")
        ledger = orchestrator.ledger
        return {
            "count": ledger.count(),
            "green_ratio": ledger.green_ratio(),
            "sell_margin": orchestrator.current_sell_margin(),
            "positions": ledger.snapshot(),
        }

    @router.get("/positions/{symbol}")
    async def position(symbol: str) -> Dict[str, Any]:
        _require(orchestrator, "Orchestrator not configured.")
        found = orchestrator.ledger.get(symbol)
        if found is None:
            raise HTTPException(status_code=404, detail=f"No open position for {symbol.upper()}.")
        return found.to_dict()

    @router.get("/budget")
    async def budget() -> Dict[str, Any]:
        _require(orchestrator, "Orchestrator not configured.")
        engine = orchestrator.budget
        return {
            **engine.status().to_dict(),
            "protection_rate": engine.protection_rate(),
            "recent_sales": engine.recent_sales(int((config.get("frontend", {}) or {}).get("recent_sales", 5) or 5)),
        }

    @router.get("/cooldowns")
    async def cooldowns() -> Dict[str, Any]:
        _require(orchestrator, "Orchestrator not configured.")
        manager = orchestrator.cooldowns
        return {
            "global_remaining_seconds": manager.global_remaining(),
            "lockouts": manager.active_lockouts(),
            "active": [info.to_dict() for info in manager.active_cooldowns()],
        }

    @router.get("/candidates")
    async def candidates() -> Dict[str, Any]:
        _require(orchestrator, "Orchestrator not configured.")
        return {"candidates": list(orchestrator.last_candidates)}

    @router.get("/blacklist")
    async def blacklist_status() -> Dict[str, Any]:
        _require(blacklist, "Blacklist not configured.")
        return blacklist.status()

    @router.get("/blacklist/check/{symbol}")
    async def blacklist_check(symbol: str) -> Dict[str, Any]:
        _require(blacklist, "Blacklist not configured.")
        return blacklist.evaluate(symbol).to_dict()

    @router.post("/blacklist/assets/{asset}")
    async def add_asset(asset: str) -> Dict[str, Any]:
        _require(blacklist, "Blacklist not configured.")
        try:
            added = blacklist.add_asset(asset)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"asset": asset.upper(), "added": added}

    @router.delete("/blacklist/assets/{asset}")
    async def remove_asset(asset: str) -> Dict[str, Any]:
        _require(blacklist, "Blacklist not configured.")
        if not blacklist.remove_asset(asset):
            raise HTTPException(status_code=404, detail=f"Asset {asset.upper()} is not blacklisted.")
        return {"asset": asset.upper(), "removed": True}

    @router.post("/blacklist/symbols/{symbol}")
    async def add_symbol(symbol: str) -> Dict[str, Any]:
        _require(blacklist, "Blacklist not configured.")
        try:
            added = blacklist.add_symbol(symbol)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"symbol": symbol.upper(), "added": added}

    @router.delete("/blacklist/symbols/{symbol}")
    async def remove_symbol(symbol: str) -> Dict[str, Any]:
        _require(blacklist, "Blacklist not configured.")
        if not blacklist.remove_symbol(symbol):
            raise HTTPException(status_code=404, detail=f"Symbol {symbol.upper()} is not blacklisted.")
        return {"symbol": symbol.upper(), "removed": True}

    app.include_router(router)


def _require(dependency: Any, message: str) -> None:
    if dependency is None:
        raise HTTPException(status_code=503, detail=message)
