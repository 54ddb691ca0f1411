"""Dependency injection for the FastAPI application."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Header, HTTPException, Request

from slotrank.config import AppConfig
from slotrank.engine.evaluator import Evaluator
from slotrank.engine.leaderboard import LeaderboardService
from slotrank.engine.lifecycle import PredictionManager
from slotrank.pricing.oracle import MarketPriceOracle
from slotrank.registry.db import Database
from slotrank.registry.queries import Registry

if TYPE_CHECKING:
    from slotrank.api.ws import ConnectionHub


class AppState:
    """Holds shared application state initialised during lifespan."""

    def __init__(self) -> None:
        self.config: AppConfig | None = None
        self.db: Database | None = None
        self.registry: Registry | None = None
        self.oracle: MarketPriceOracle | None = None
        self.hub: ConnectionHub | None = None
        self.prediction_manager: PredictionManager | None = None
        self.evaluator: Evaluator | None = None
        self.leaderboard: LeaderboardService | None = None


# Singleton shared across the app
app_state = AppState()


def get_registry() -> Registry:
    if app_state.registry is None:
        raise RuntimeError("Registry not initialised")
    return app_state.registry


def get_prediction_manager() -> PredictionManager:
    if app_state.prediction_manager is None:
        raise RuntimeError("PredictionManager not initialised")
    return app_state.prediction_manager


def get_evaluator() -> Evaluator:
    if app_state.evaluator is None:
        raise RuntimeError("Evaluator not initialised")
    return app_state.evaluator


def get_leaderboard() -> LeaderboardService:
    if app_state.leaderboard is None:
        raise RuntimeError("LeaderboardService not initialised")
    return app_state.leaderboard


def get_current_user_id(request: Request) -> str:
    """Caller identity resolved by the auth middleware."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


def require_admin(request: Request) -> str:
    user_id = get_current_user_id(request)
    user = get_registry().get_user(user_id)
    if user is None or not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id


def require_internal_token(x_internal_token: str | None = Header(default=None)) -> None:
    config = app_state.config
    expected = config.internal_api_token if config else ""
    if not expected or x_internal_token != expected:
        raise HTTPException(status_code=401, detail="Invalid internal token")
