"""FastAPI application factory with CORS, auth middleware, and lifespan management."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from slotrank.api.auth import bearer_token, decode_subject
from slotrank.api.deps import app_state
from slotrank.api.ws import ConnectionHub
from slotrank.collaborators import RegistryBadgeService
from slotrank.config import load_config
from slotrank.engine.evaluator import Evaluator
from slotrank.engine.leaderboard import LeaderboardService
from slotrank.engine.lifecycle import PredictionManager
from slotrank.errors import SlotrankError
from slotrank.pricing.oracle import build_oracle
from slotrank.registry.db import Database
from slotrank.registry.queries import Registry
from slotrank.scheduler import RolloverScheduler, start_background_jobs

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup/shutdown of the DB, services and background jobs."""
    config = load_config()

    db = Database(config.db_dsn)
    db.connect()
    registry = Registry(db)

    hub = ConnectionHub(config.slot_timezone)
    hub.bind_loop(asyncio.get_running_loop())
    oracle = build_oracle(registry, config.price_cache_ttl_seconds)
    badges = RegistryBadgeService(registry)

    prediction_manager = PredictionManager(registry, oracle, push=hub, tz=config.slot_timezone)
    evaluator = Evaluator(
        registry, oracle, badges=badges, push=hub,
        claim_timeout=timedelta(seconds=config.claim_timeout_seconds),
        batch_size=config.evaluation_batch_size,
    )
    leaderboard = LeaderboardService(
        registry, badges=badges, push=hub,
        tz=config.rollover_timezone, top_k=config.leaderboard_top_k,
    )

    app_state.config = config
    app_state.db = db
    app_state.registry = registry
    app_state.oracle = oracle
    app_state.hub = hub
    app_state.prediction_manager = prediction_manager
    app_state.evaluator = evaluator
    app_state.leaderboard = leaderboard

    bg_tasks: list[asyncio.Task] = []
    if config.enable_background_jobs:
        bg_tasks = start_background_jobs(
            evaluator=evaluator,
            oracle=oracle,
            registry=registry,
            push=hub,
            scheduler=RolloverScheduler(leaderboard, registry),
            evaluation_interval=config.evaluation_interval_seconds,
            price_refresh_interval=config.price_refresh_interval_seconds,
            slot_broadcast_interval=config.slot_broadcast_interval_seconds,
            rollover_check_interval=config.rollover_check_interval_seconds,
        )
    logger.info("API started: DB, services and %d background jobs ready", len(bg_tasks))
    yield

    for task in bg_tasks:
        task.cancel()
    await asyncio.gather(*bg_tasks, return_exceptions=True)

    db.close()
    logger.info("API shutdown complete")


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolve the caller from a bearer token into ``request.state.user_id``.

    Routes that need a caller enforce it through ``get_current_user_id``.
    With no secret configured (dev mode) the ``X-User-Id`` header is trusted.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.user_id = None
        if not request.url.path.startswith(API_PREFIX):
            return await call_next(request)

        config = app_state.config
        if not config or not config.auth_secret_key:
            request.state.user_id = request.headers.get("x-user-id") or None
            return await call_next(request)

        token = bearer_token(request.headers.get("authorization"))
        if token is not None:
            user_id = decode_subject(token, config.auth_secret_key)
            if user_id is None:
                return JSONResponse(status_code=401, content={"detail": "Invalid or expired token"})
            request.state.user_id = user_id

        return await call_next(request)


async def slotrank_error_handler(request: Request, exc: SlotrankError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        use_lifespan: If False, skip the production lifespan (useful for testing
            where deps are injected via app_state directly).
    """
    app = FastAPI(
        title="Slotrank API",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:4173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AuthMiddleware)
    app.add_exception_handler(SlotrankError, slotrank_error_handler)

    from slotrank.api import ws
    from slotrank.api.routes import cron, leaderboard, predictions, sentiment, slots, system

    app.include_router(predictions.router, prefix=API_PREFIX, tags=["predictions"])
    app.include_router(slots.router, prefix=API_PREFIX, tags=["slots"])
    app.include_router(sentiment.router, prefix=API_PREFIX, tags=["sentiment"])
    app.include_router(leaderboard.router, prefix=API_PREFIX, tags=["leaderboard"])
    app.include_router(system.router, prefix=API_PREFIX, tags=["system"])
    app.include_router(cron.router, prefix=API_PREFIX, tags=["cron"])
    app.include_router(ws.router, tags=["websocket"])

    return app
