"""Up/down counts per slot, per asset and across all assets."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from slotrank.api.deps import get_prediction_manager
from slotrank.engine.lifecycle import PredictionManager
from slotrank.models.duration import DurationClass

router = APIRouter()

_DURATION_KEYS = {d.value for d in DurationClass}


# Global routes first: "/sentiment/global/..." must not be read as an asset symbol.
@router.get("/sentiment/global")
def global_sentiment(
    duration: str = "24h",
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    return manager.get_global_sentiment(duration)


@router.get("/sentiment/global/top-assets")
def top_assets(
    period: str = "1w",
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    return manager.get_top_assets(period)


@router.get("/sentiment/global/{duration}")
def global_sentiment_for(
    duration: str,
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    return manager.get_global_sentiment(duration)


@router.get("/sentiment/{symbol:path}/{duration}")
def asset_sentiment(
    symbol: str,
    duration: str,
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    if duration not in _DURATION_KEYS:
        # Pair symbols such as EUR/USD end up split here when no duration follows.
        return _overview(f"{symbol}/{duration}", manager)
    return {
        "assetSymbol": symbol,
        "duration": duration,
        "slots": manager.get_sentiment(symbol, duration),
    }


@router.get("/sentiment/{symbol:path}")
def asset_sentiment_overview(
    symbol: str,
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    return _overview(symbol, manager)


def _overview(symbol: str, manager: PredictionManager) -> dict:
    return {"assetSymbol": symbol, "durations": manager.get_sentiment_overview(symbol)}
