from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from slotrank.collaborators import BadgeService, PushTransport
from slotrank.engine.leaderboard import LeaderboardService, rank_profiles
from slotrank.errors import ValidationError
from slotrank.models.profile import ProfileAggregate
from slotrank.registry.queries import Registry

NOW = datetime(2026, 10, 19, 0, 0, tzinfo=UTC)


def _profile(user_id: str, score: int, predictions: int = 4, correct: int = 2) -> ProfileAggregate:
    return ProfileAggregate(user_id=user_id, monthly_score=score, monthly_predictions=predictions,
                            monthly_correct=correct, username=user_id.upper())


@pytest.fixture
def registry() -> MagicMock:
    reg = MagicMock(spec=Registry)
    reg.claim_rollover_period.return_value = True
    reg.lock_profiles.return_value = []
    reg.archive_monthly_scores.return_value = 0
    return reg


@pytest.fixture
def badges() -> MagicMock:
    return MagicMock(spec=BadgeService)


@pytest.fixture
def push() -> MagicMock:
    return MagicMock(spec=PushTransport)


@pytest.fixture
def service(registry: MagicMock, badges: MagicMock, push: MagicMock) -> LeaderboardService:
    return LeaderboardService(registry, badges=badges, push=push, tz="UTC", top_k=30, clock=lambda: NOW)


class TestRankProfiles:
    def test_ties_get_consecutive_ranks(self) -> None:
        ranked = rank_profiles([_profile("c", 10), _profile("b", 50), _profile("a", 50)])
        assert [(rank, p.user_id) for rank, p in ranked] == [(1, "a"), (2, "b"), (3, "c")]

    def test_non_positive_scores_unranked(self) -> None:
        ranked = rank_profiles([_profile("a", 0), _profile("b", -5), _profile("c", 1)])
        assert [p.user_id for _, p in ranked] == ["c"]

    def test_empty(self) -> None:
        assert rank_profiles([]) == []


class TestRollover:
    def test_archives_ranks_and_resets(
        self, service: LeaderboardService, registry: MagicMock, badges: MagicMock, push: MagicMock,
    ) -> None:
        profiles = [_profile("a", 50), _profile("b", 50), _profile("c", 10),
                    _profile("d", 0), _profile("e", -5)]
        registry.lock_profiles.return_value = profiles
        registry.archive_monthly_scores.return_value = 5

        result = service.process_monthly_rollover()

        assert result.period_key == "2026-09"
        assert (result.ranked, result.archived_scores, result.reset_profiles) == (3, 5, 5)
        registry.claim_rollover_period.assert_called_once_with("2026-09")

        key, entries, ranks = registry.archive_leaderboard.call_args[0]
        assert key == "2026-09"
        assert [p.user_id for p in entries] == ["a", "b", "c"]
        assert ranks == {"a": 1, "b": 2, "c": 3}
        registry.archive_monthly_scores.assert_called_once_with("2026-09", profiles, ranks)
        registry.reset_monthly_profiles.assert_called_once_with(ranks)
        registry.set_rollover_ranked_count.assert_called_once_with("2026-09", 3)

        badges.award_rank_badges.assert_called_once_with("2026-09")
        payload = push.broadcast_leaderboard_update.call_args[0][0]
        assert payload["type"] == "rollover"
        assert payload["monthYear"] == "2026-09"

    def test_second_run_is_skipped(
        self, service: LeaderboardService, registry: MagicMock, badges: MagicMock,
    ) -> None:
        registry.claim_rollover_period.return_value = False

        result = service.process_monthly_rollover("2026-09")

        assert result.skipped is True
        registry.lock_profiles.assert_not_called()
        registry.reset_monthly_profiles.assert_not_called()
        badges.award_rank_badges.assert_not_called()

    def test_no_positive_scores_archives_nothing(
        self, service: LeaderboardService, registry: MagicMock,
    ) -> None:
        registry.lock_profiles.return_value = [_profile("a", 0), _profile("b", -3)]

        result = service.process_monthly_rollover()

        assert result.ranked == 0
        registry.archive_leaderboard.assert_not_called()
        registry.reset_monthly_profiles.assert_called_once_with({})

    def test_runs_in_one_transaction(self, service: LeaderboardService, registry: MagicMock) -> None:
        service.process_monthly_rollover()
        registry.transaction.assert_called_once()

    def test_explicit_month(self, service: LeaderboardService, registry: MagicMock) -> None:
        assert service.process_monthly_rollover("2026-08").period_key == "2026-08"

    def test_invalid_month(self, service: LeaderboardService) -> None:
        with pytest.raises(ValidationError):
            service.process_monthly_rollover("August")

    def test_badge_failure_after_commit_is_logged(
        self, service: LeaderboardService, badges: MagicMock,
    ) -> None:
        badges.award_rank_badges.side_effect = RuntimeError("badges down")
        assert service.process_monthly_rollover().skipped is False

    def test_record_baseline(self, service: LeaderboardService, registry: MagicMock) -> None:
        assert service.record_baseline("2026-09") is True
        registry.claim_rollover_period.assert_called_once_with("2026-09", baseline=True)


class TestRankings:
    def test_current_ranking_from_predictions(
        self, service: LeaderboardService, registry: MagicMock,
    ) -> None:
        registry.aggregate_period_scores.return_value = [
            {"user_id": "b", "username": "bob", "total_score": 15,
             "total_predictions": 3, "correct_predictions": 2},
            {"user_id": "a", "username": None, "total_score": 15,
             "total_predictions": 2, "correct_predictions": 2},
            {"user_id": "c", "username": "cat", "total_score": 40,
             "total_predictions": 5, "correct_predictions": 4},
        ]

        entries = service.current_period_ranking()

        assert [(e.rank, e.user_id) for e in entries] == [(1, "c"), (2, "a"), (3, "b")]
        assert entries[1].username == "Unknown"
        start, end, limit = registry.aggregate_period_scores.call_args[0]
        assert start == datetime(2026, 10, 1, tzinfo=UTC)
        assert end == datetime(2026, 11, 1, tzinfo=UTC)
        assert limit == 30

    def test_current_ranking_falls_back_to_profiles(
        self, service: LeaderboardService, registry: MagicMock,
    ) -> None:
        registry.aggregate_period_scores.return_value = []
        registry.list_profiles_by_monthly_score.return_value = [_profile("a", 20), _profile("b", 5)]

        entries = service.current_period_ranking()

        assert [(e.rank, e.total_score) for e in entries] == [(1, 20), (2, 5)]

    def test_archived_month_defaults_to_previous(
        self, service: LeaderboardService, registry: MagicMock,
    ) -> None:
        registry.get_monthly_leaderboard.return_value = [
            {"rank": 1, "user_id": "a", "username": "alice", "total_score": 50,
             "total_predictions": 4, "correct_predictions": 3, "badges": ["month_1st"]},
        ]

        entries = service.monthly_leaderboard()

        registry.get_monthly_leaderboard.assert_called_once_with("2026-09", 30)
        assert entries[0].badges == ["month_1st"]

    def test_current_keyword(self, service: LeaderboardService, registry: MagicMock) -> None:
        registry.aggregate_period_scores.return_value = []
        registry.list_profiles_by_monthly_score.return_value = []
        assert service.monthly_leaderboard("current") == []
        registry.get_monthly_leaderboard.assert_not_called()

    def test_user_current_stats(self, service: LeaderboardService, registry: MagicMock) -> None:
        registry.get_profile.return_value = _profile("u1", 30)
        registry.count_profiles_ahead.return_value = 2

        stats = service.user_current_stats("u1")

        assert stats is not None
        assert stats["currentRank"] == 3
        assert stats["monthlyScore"] == 30
        assert stats["accuracyPercentage"] == 50.0

    def test_user_without_profile(self, service: LeaderboardService, registry: MagicMock) -> None:
        registry.get_profile.return_value = None
        assert service.user_current_stats("ghost") is None

    def test_leaderboard_stats(self, service: LeaderboardService, registry: MagicMock) -> None:
        registry.count_scoring_profiles.return_value = 12
        registry.count_leaderboard_entries.return_value = 9
        stats = service.leaderboard_stats()
        assert stats["currentMonth"] == {"monthYear": "2026-10", "participants": 12}
        assert stats["previousMonth"] == {"monthYear": "2026-09", "participants": 9}


class TestCountdown:
    def test_utc(self, service: LeaderboardService) -> None:
        c = service.countdown()
        assert c["monthYear"] == "2026-10"
        assert c["secondsRemaining"] == 13 * 86400
        assert (c["days"], c["hours"], c["minutes"], c["seconds"]) == (13, 0, 0, 0)

    def test_local_month_end(self, registry: MagicMock) -> None:
        # Berlin is on CET (UTC+1) on 1 November, so the month closes at 23:00 UTC
        service = LeaderboardService(registry, tz="Europe/Berlin", clock=lambda: NOW)
        c = service.countdown()
        assert (c["days"], c["hours"]) == (12, 23)
        assert c["nextRolloverAt"] == "2026-11-01T00:00:00+01:00"
