"""Monthly leaderboard: rollover into the archive, and live rankings.

A rollover closes one calendar month in the rollover timezone. It ranks every
profile with a positive monthly score, archives the ranking plus a score
history row per profile, and zeroes the monthly counters. The whole thing
runs in one transaction keyed by the month, so running it twice for the same
month archives once and resets once.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo

from slotrank.collaborators import BadgeService, NullBadgeService, NullPushTransport, PushTransport
from slotrank.models.profile import LeaderboardEntry, MonthlyScore, ProfileAggregate
from slotrank.registry.queries import Registry
from slotrank.slots import (
    DEFAULT_TIMEZONE,
    month_bounds,
    period_key,
    previous_period_key,
    resolve_zone,
    validate_period_key,
)

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 30


@dataclass
class RolloverResult:
    period_key: str
    skipped: bool = False
    ranked: int = 0
    archived_scores: int = 0
    reset_profiles: int = 0

    def to_dict(self) -> dict:
        return {
            "monthYear": self.period_key,
            "skipped": self.skipped,
            "ranked": self.ranked,
            "archivedScores": self.archived_scores,
            "resetProfiles": self.reset_profiles,
        }


def rank_profiles(profiles: Iterable[ProfileAggregate]) -> list[tuple[int, ProfileAggregate]]:
    """Consecutive ranks for profiles with a positive monthly score.

    Highest score first; equal scores are ordered by user id.
    """
    scoring = sorted(
        (p for p in profiles if p.monthly_score > 0),
        key=lambda p: (-p.monthly_score, p.user_id),
    )
    return [(i, p) for i, p in enumerate(scoring, start=1)]


class LeaderboardService:
    def __init__(
        self,
        registry: Registry,
        badges: BadgeService | None = None,
        push: PushTransport | None = None,
        tz: str | tzinfo = DEFAULT_TIMEZONE,
        top_k: int = DEFAULT_TOP_K,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._registry = registry
        self._badges = badges or NullBadgeService()
        self._push = push or NullPushTransport()
        self._tz = resolve_zone(tz)
        self._top_k = top_k
        self._clock = clock

    @property
    def timezone(self) -> tzinfo:
        return self._tz

    # ------------------------------------------------------------------
    # Rollover
    # ------------------------------------------------------------------

    def process_monthly_rollover(self, month: str | None = None) -> RolloverResult:
        """Archive and reset for ``month`` (default: the month that just ended)."""
        key = validate_period_key(month) if month else previous_period_key(self._clock(), self._tz)

        with self._registry.transaction():
            if not self._registry.claim_rollover_period(key):
                logger.info("Rollover for %s already processed, skipping", key)
                return RolloverResult(period_key=key, skipped=True)

            profiles = self._registry.lock_profiles()
            ranked = rank_profiles(profiles)
            ranks = {p.user_id: rank for rank, p in ranked}

            if ranked:
                self._registry.archive_leaderboard(key, [p for _, p in ranked], ranks)
            archived = self._registry.archive_monthly_scores(key, profiles, ranks) if profiles else 0
            self._registry.reset_monthly_profiles(ranks)
            self._registry.set_rollover_ranked_count(key, len(ranked))

        result = RolloverResult(
            period_key=key,
            ranked=len(ranked),
            archived_scores=archived,
            reset_profiles=len(profiles),
        )
        logger.info(
            "Rollover for %s: %d ranked, %d profiles reset", key, result.ranked, result.reset_profiles,
        )

        try:
            self._badges.award_rank_badges(key)
        except Exception:
            logger.warning("Rank badges failed for %s", key, exc_info=True)
        try:
            self._push.broadcast_leaderboard_update({"type": "rollover", **result.to_dict()})
        except Exception:
            logger.warning("Rollover broadcast failed for %s", key, exc_info=True)
        return result

    def record_baseline(self, month: str) -> bool:
        """Mark ``month`` as closed without archiving anything.

        Used on a fresh deployment so the scheduler does not treat history it
        never saw as a missed rollover.
        """
        return self._registry.claim_rollover_period(validate_period_key(month), baseline=True)

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    def current_period_ranking(self) -> list[LeaderboardEntry]:
        """Live top-K for the current month, aggregated from predictions.

        Falls back to profile monthly scores when the month has no predictions.
        """
        start, end = month_bounds(self._clock(), self._tz)
        rows = self._registry.aggregate_period_scores(start, end, self._top_k)
        if not rows:
            return self._profile_ranking()

        rows = sorted(rows, key=lambda r: (-int(r["total_score"]), r["user_id"]))[: self._top_k]
        return [
            LeaderboardEntry(
                rank=i,
                user_id=r["user_id"],
                username=r["username"] or "Unknown",
                total_score=int(r["total_score"]),
                total_predictions=int(r["total_predictions"]),
                correct_predictions=int(r["correct_predictions"]),
            )
            for i, r in enumerate(rows, start=1)
        ]

    def _profile_ranking(self) -> list[LeaderboardEntry]:
        profiles = self._registry.list_profiles_by_monthly_score(self._top_k)
        return [
            LeaderboardEntry(
                rank=i,
                user_id=p.user_id,
                username=p.username or "Unknown",
                total_score=p.monthly_score,
                total_predictions=p.monthly_predictions,
                correct_predictions=p.monthly_correct,
            )
            for i, p in enumerate(profiles, start=1)
        ]

    def monthly_leaderboard(self, month: str | None = None) -> list[LeaderboardEntry]:
        """Archived ranking for ``month``; ``current`` is the live ranking.

        No month (or ``previous``) means the month before the current one.
        """
        if month == "current":
            return self.current_period_ranking()
        if month in (None, "", "previous"):
            key = previous_period_key(self._clock(), self._tz)
        else:
            key = validate_period_key(month)

        rows = self._registry.get_monthly_leaderboard(key, self._top_k)
        return [
            LeaderboardEntry(
                rank=r["rank"],
                user_id=r["user_id"],
                username=r["username"],
                total_score=r["total_score"],
                total_predictions=r["total_predictions"],
                correct_predictions=r["correct_predictions"],
                badges=list(r.get("badges") or []),
            )
            for r in rows
        ]

    def user_monthly_history(self, user_id: str, limit: int = 12) -> list[MonthlyScore]:
        return self._registry.get_monthly_history(user_id, limit)

    def user_current_stats(self, user_id: str) -> dict | None:
        profile = self._registry.get_profile(user_id)
        if profile is None:
            return None
        ahead = self._registry.count_profiles_ahead(user_id, profile.monthly_score)
        return {
            "userId": profile.user_id,
            "username": profile.username or "Unknown",
            "monthlyScore": profile.monthly_score,
            "monthlyPredictions": profile.monthly_predictions,
            "monthlyCorrect": profile.monthly_correct,
            "accuracyPercentage": profile.monthly_accuracy,
            "totalScore": profile.total_score,
            "totalPredictions": profile.total_predictions,
            "currentRank": ahead + 1,
            "lastMonthRank": profile.last_month_rank,
        }

    def leaderboard_stats(self) -> dict:
        now = self._clock()
        previous = previous_period_key(now, self._tz)
        return {
            "currentMonth": {
                "monthYear": period_key(now, self._tz),
                "participants": self._registry.count_scoring_profiles(),
            },
            "previousMonth": {
                "monthYear": previous,
                "participants": self._registry.count_leaderboard_entries(previous),
            },
        }

    def countdown(self) -> dict:
        """Time left until the current month closes in the rollover timezone."""
        now = self._clock()
        _, next_start = month_bounds(now, self._tz)
        remaining = max(int((next_start - now).total_seconds()), 0)
        days, rest = divmod(remaining, 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        return {
            "monthYear": period_key(now, self._tz),
            "nextRolloverAt": next_start.isoformat(),
            "secondsRemaining": remaining,
            "days": days,
            "hours": hours,
            "minutes": minutes,
            "seconds": seconds,
        }
