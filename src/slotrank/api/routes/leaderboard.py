"""Monthly leaderboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from slotrank.api.deps import get_current_user_id, get_leaderboard, get_registry
from slotrank.engine.leaderboard import LeaderboardService
from slotrank.registry.queries import Registry

router = APIRouter()


@router.get("/leaderboard")
def leaderboard(
    month: str | None = Query(None, description="current, previous or YYYY-MM"),
    service: LeaderboardService = Depends(get_leaderboard),
) -> dict:
    entries = service.monthly_leaderboard(month)
    return {"month": month or "previous", "entries": [e.to_dict() for e in entries]}


@router.get("/leaderboard/current")
def current_leaderboard(service: LeaderboardService = Depends(get_leaderboard)) -> dict:
    return {"entries": [e.to_dict() for e in service.current_period_ranking()]}


@router.get("/leaderboard/user")
def my_standing(
    user_id: str = Depends(get_current_user_id),
    service: LeaderboardService = Depends(get_leaderboard),
) -> dict:
    stats = service.user_current_stats(user_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="No profile yet")
    return stats


@router.get("/leaderboard/stats")
def leaderboard_stats(service: LeaderboardService = Depends(get_leaderboard)) -> dict:
    return service.leaderboard_stats()


@router.get("/leaderboard/countdown")
def countdown(service: LeaderboardService = Depends(get_leaderboard)) -> dict:
    return service.countdown()


@router.get("/users/{user_id}/history")
def monthly_history(
    user_id: str,
    limit: int = Query(12, ge=1, le=60),
    service: LeaderboardService = Depends(get_leaderboard),
) -> dict:
    return {"userId": user_id, "history": [m.to_dict() for m in service.user_monthly_history(user_id, limit)]}


@router.get("/users/{user_id}/badges")
def user_badges(user_id: str, registry: Registry = Depends(get_registry)) -> dict:
    return {
        "userId": user_id,
        "badges": [
            {
                "badgeType": b.badge_type,
                "name": b.name,
                "monthYear": b.period_key,
                "rank": b.rank,
                "totalScore": b.total_score,
            }
            for b in registry.get_user_badges(user_id)
        ],
    }
