"""Badge and push collaborators used by the engine.

The engine calls these after its own writes have committed. A failure here
never affects a prediction or a score: callers log it and move on.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import psycopg

from slotrank.errors import CollaboratorFailure
from slotrank.models.duration import DurationClass
from slotrank.models.profile import Badge
from slotrank.registry.queries import Registry

logger = logging.getLogger(__name__)

FIRST_CORRECT_BADGE = "first_correct"
LIFETIME_PERIOD = "lifetime"
RANK_BADGES: dict[int, tuple[str, str]] = {
    1: ("month_1st", "Monthly Champion"),
    2: ("month_2nd", "Monthly Runner-up"),
    3: ("month_3rd", "Monthly Third Place"),
}


@runtime_checkable
class BadgeService(Protocol):
    def check_and_award_badges(self, user_id: str) -> list[Badge]: ...

    def award_rank_badges(self, period_key: str) -> None: ...


@runtime_checkable
class PushTransport(Protocol):
    def broadcast_slot_update(self, duration: DurationClass) -> None: ...

    def broadcast_sentiment_update(self, symbol: str, duration: DurationClass, payload: list[dict]) -> None: ...

    def broadcast_leaderboard_update(self, payload: dict) -> None: ...


class NullBadgeService:
    def check_and_award_badges(self, user_id: str) -> list[Badge]:
        return []

    def award_rank_badges(self, period_key: str) -> None:
        return None


class NullPushTransport:
    def broadcast_slot_update(self, duration: DurationClass) -> None:
        return None

    def broadcast_sentiment_update(self, symbol: str, duration: DurationClass, payload: list[dict]) -> None:
        return None

    def broadcast_leaderboard_update(self, payload: dict) -> None:
        return None


class RegistryBadgeService:
    """Awards a starter badge for the first correct call and podium badges per month."""

    def __init__(self, registry: Registry) -> None:
        self._registry = registry

    def check_and_award_badges(self, user_id: str) -> list[Badge]:
        try:
            if self._registry.count_correct_predictions(user_id) < 1:
                return []
            badge = Badge(
                user_id=user_id,
                badge_type=FIRST_CORRECT_BADGE,
                period_key=LIFETIME_PERIOD,
                name="First Correct Prediction",
            )
            if self._registry.insert_badge(badge):
                logger.info("Awarded %s to %s", badge.badge_type, user_id)
                return [badge]
            return []
        except psycopg.Error as exc:
            raise CollaboratorFailure(f"Badge check failed for {user_id}: {exc}") from exc

    def award_rank_badges(self, period_key: str) -> None:
        try:
            rows = self._registry.get_monthly_leaderboard(period_key, limit=len(RANK_BADGES))
            awarded = 0
            for row in rows:
                entry = RANK_BADGES.get(row["rank"])
                if entry is None:
                    continue
                badge_type, name = entry
                badge = Badge(
                    user_id=row["user_id"],
                    badge_type=badge_type,
                    period_key=period_key,
                    name=name,
                    rank=row["rank"],
                    total_score=row["total_score"],
                )
                if self._registry.insert_badge(badge):
                    awarded += 1
        except psycopg.Error as exc:
            raise CollaboratorFailure(f"Rank badges failed for {period_key}: {exc}") from exc
        logger.info("Awarded %d rank badges for %s", awarded, period_key)
