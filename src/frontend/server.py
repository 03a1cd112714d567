"""JSON status server for the trading core."""

from __future__ import annotations

import math
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from rest_api import attach_api_routes


def create_app(
    *,
    orchestrator: Optional[Any] = None,
    blacklist: Optional[Any] = None,
    config: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    """Return a FastAPI app exposing read-only status plus blacklist maintenance."""
    app = FastAPI(
        title="EUR Spot Trading Bot",
        description="Status API for the paper-trading risk core.",
        version="0.1.0",
    )

    attach_api_routes(
        app,
        orchestrator=orchestrator,
        blacklist=blacklist,
        config=config or {},
    )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True, "orchestrator": orchestrator is not None}

    @app.get("/api/status", response_class=JSONResponse)
    async def api_status() -> JSONResponse:
        """Budget, positions, cooldowns and the last cycle in one payload."""
        if orchestrator is None:
            return JSONResponse({"running": False, "detail": "Orchestrator not configured."}, status_code=503)
        payload = orchestrator.status_snapshot()
        safe_payload = _sanitize_for_json(jsonable_encoder(payload))
        return JSONResponse(safe_payload)

    return app


def _sanitize_for_json(value: Any) -> Any:
    """Best-effort JSON sanitizer for status payloads.

    Starlette's `JSONResponse` uses `allow_nan=False`; NaN/inf (e.g. a P/L on a
    zero investment) would fail the whole response, so they become None.
    """

    if value is None or isinstance(value, (str, bool, int)):
        return value

    if isinstance(value, float):
        return value if math.isfinite(value) else None

    if isinstance(value, Enum):
        return _sanitize_for_json(value.value)

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, Path):
        return str(value)

    if isinstance(value, dict):
        return {str(k): _sanitize_for_json(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [_sanitize_for_json(v) for v in value]

    try:
        as_float = float(value)
        return as_float if math.isfinite(as_float) else None
    except (TypeError, ValueError):
        return str(value)
