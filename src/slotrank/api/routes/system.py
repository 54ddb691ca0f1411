"""System health, asset catalogue and prices, and admin actions."""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from slotrank.api.deps import app_state, get_evaluator, get_registry, require_admin
from slotrank.engine.evaluator import Evaluator
from slotrank.errors import AssetUnavailable
from slotrank.models.asset import validate_symbol
from slotrank.registry.queries import Registry

router = APIRouter()

_start_time = time.time()


@router.get("/system/health")
def health() -> dict:
    db_ok = app_state.db.health_check() if app_state.db else False
    oracle_ok = app_state.oracle.is_healthy if app_state.oracle else False
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": db_ok,
        "priceFeed": oracle_ok,
        "websocketClients": app_state.hub.client_count if app_state.hub else 0,
        "uptimeSeconds": int(time.time() - _start_time),
    }


@router.get("/assets")
def assets(registry: Registry = Depends(get_registry)) -> dict:
    return {"assets": [a.to_dict() for a in registry.get_active_assets()]}


def _known_asset(registry: Registry, symbol: str) -> str:
    symbol = validate_symbol(symbol)
    if registry.get_asset(symbol) is None:
        raise AssetUnavailable(f"Asset {symbol} not found")
    return symbol


@router.get("/assets/{symbol:path}/price")
def asset_price(symbol: str, registry: Registry = Depends(get_registry)) -> dict:
    symbol = _known_asset(registry, symbol)
    point = registry.get_price_point(symbol)
    if point is None:
        raise HTTPException(status_code=404, detail="Price not found")
    return {
        "symbol": symbol,
        "price": float(point["price"]),
        "source": point["source"],
        "fetchedAt": point["fetched_at"].isoformat(),
    }


@router.get("/assets/{symbol:path}/history")
def asset_price_history(
    symbol: str,
    days: int = Query(default=30, ge=1, le=365),
    registry: Registry = Depends(get_registry),
) -> dict:
    symbol = _known_asset(registry, symbol)
    since = datetime.now(UTC) - timedelta(days=days)
    return {
        "symbol": symbol,
        "days": days,
        "prices": [
            {"price": float(p["price"]), "source": p["source"], "timestamp": p["fetched_at"].isoformat()}
            for p in registry.get_price_history(symbol, since)
        ],
    }


@router.post("/admin/predictions/{prediction_id}/evaluate")
def evaluate_prediction(
    prediction_id: int,
    _admin: str = Depends(require_admin),
    evaluator: Evaluator = Depends(get_evaluator),
) -> dict:
    return evaluator.evaluate_one(prediction_id).to_dict()
