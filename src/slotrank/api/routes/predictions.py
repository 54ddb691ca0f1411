"""Prediction placement and the caller's own history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from slotrank.api.deps import get_current_user_id, get_prediction_manager
from slotrank.engine.lifecycle import PredictionManager
from slotrank.models.prediction import PredictionStatus

router = APIRouter()


class CreatePredictionRequest(BaseModel):
    asset_symbol: str
    direction: str
    duration: str


@router.post("/predictions", status_code=201)
def create_prediction(
    body: CreatePredictionRequest,
    user_id: str = Depends(get_current_user_id),
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    prediction = manager.create_prediction(user_id, body.asset_symbol, body.direction, body.duration)
    return {"prediction": prediction.to_dict()}


@router.get("/predictions")
def list_predictions(
    status: PredictionStatus | None = Query(None),
    symbol: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    predictions = manager.list_user_predictions(
        user_id, status=status, symbol=symbol, limit=limit, offset=offset,
    )
    return {"predictions": [p.to_dict() for p in predictions], "count": len(predictions)}


@router.get("/predictions/stats")
def prediction_stats(
    user_id: str = Depends(get_current_user_id),
    manager: PredictionManager = Depends(get_prediction_manager),
) -> dict:
    return manager.get_user_stats(user_id)
