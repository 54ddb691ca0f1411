from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from slotrank.collaborators import BadgeService, PushTransport
from slotrank.engine.evaluator import EvaluationReport, Evaluator
from slotrank.models.duration import DurationClass
from slotrank.models.prediction import Direction, Prediction, PredictionResult, PredictionStatus
from slotrank.pricing.oracle import PriceOracle
from slotrank.registry.queries import Registry

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _claimed(pid: int = 1, symbol: str = "bitcoin", direction: Direction = Direction.UP,
             slot_index: int = 1, price_start: str = "100", user_id: str = "u1") -> Prediction:
    return Prediction(
        id=pid,
        user_id=user_id,
        asset_symbol=symbol,
        direction=direction,
        duration=DurationClass.ONE_HOUR,
        slot_index=slot_index,
        slot_start=datetime(2026, 10, 19, 11, 0, tzinfo=UTC),
        slot_end=datetime(2026, 10, 19, 11, 14, 59, 999999, tzinfo=UTC),
        expires_at=datetime(2026, 10, 19, 11, 14, 59, 999999, tzinfo=UTC),
        price_start=Decimal(price_start),
        status=PredictionStatus.EVALUATING,
    )


@pytest.fixture
def registry() -> MagicMock:
    reg = MagicMock(spec=Registry)
    reg.settle_prediction.return_value = True
    return reg


@pytest.fixture
def oracle() -> MagicMock:
    o = MagicMock(spec=PriceOracle)
    o.get_live_price.return_value = Decimal("101")
    o.get_cached_price.return_value = None
    return o


@pytest.fixture
def badges() -> MagicMock:
    return MagicMock(spec=BadgeService)


@pytest.fixture
def push() -> MagicMock:
    return MagicMock(spec=PushTransport)


@pytest.fixture
def evaluator(registry: MagicMock, oracle: MagicMock, badges: MagicMock, push: MagicMock) -> Evaluator:
    return Evaluator(registry, oracle, badges=badges, push=push,
                     claim_timeout=timedelta(minutes=15), batch_size=50, clock=lambda: NOW)


class TestEvaluateExpired:
    def test_nothing_to_do(self, evaluator: Evaluator, registry: MagicMock) -> None:
        registry.claim_expired.return_value = []
        report = evaluator.evaluate_expired()
        assert report == EvaluationReport()
        registry.claim_expired.assert_called_once_with(NOW, timedelta(minutes=15), 50)

    def test_correct_up_scores_slot_points(self, evaluator: Evaluator, registry: MagicMock) -> None:
        p = _claimed(slot_index=1)
        registry.claim_expired.return_value = [p]

        report = evaluator.evaluate_expired()

        assert report.evaluated == 1 and report.correct == 1
        registry.settle_prediction.assert_called_once_with(
            1, "u1", PredictionResult.CORRECT, 10, Decimal("101"), NOW,
        )
        assert p.result == PredictionResult.CORRECT
        assert p.points_awarded == 10
        assert p.price_end == Decimal("101")

    def test_wrong_down_scores_penalty(self, evaluator: Evaluator, registry: MagicMock) -> None:
        registry.claim_expired.return_value = [_claimed(direction=Direction.DOWN, slot_index=1)]
        report = evaluator.evaluate_expired()
        assert report.incorrect == 1
        assert registry.settle_prediction.call_args[0][2:4] == (PredictionResult.INCORRECT, -5)

    def test_unchanged_price_is_incorrect(
        self, evaluator: Evaluator, registry: MagicMock, oracle: MagicMock,
    ) -> None:
        oracle.get_live_price.return_value = Decimal("100")
        registry.claim_expired.return_value = [_claimed(slot_index=4)]
        evaluator.evaluate_expired()
        assert registry.settle_prediction.call_args[0][2:4] == (PredictionResult.INCORRECT, -1)

    def test_correct_in_last_slot_scores_one(self, evaluator: Evaluator, registry: MagicMock) -> None:
        p = _claimed(slot_index=4)
        registry.claim_expired.return_value = [p]

        report = evaluator.evaluate_expired()

        assert report.correct == 1
        assert registry.settle_prediction.call_args[0][2:4] == (PredictionResult.CORRECT, 1)
        assert p.points_awarded == 1
        assert p.status == PredictionStatus.EVALUATED

    def test_missing_price_defers(
        self, evaluator: Evaluator, registry: MagicMock, oracle: MagicMock,
    ) -> None:
        oracle.get_live_price.return_value = None
        p = _claimed(pid=7)
        registry.claim_expired.return_value = [p]

        report = evaluator.evaluate_expired()

        assert report.deferred == 1 and report.evaluated == 0
        registry.release_claim.assert_called_once_with(7)
        registry.settle_prediction.assert_not_called()
        assert p.status == PredictionStatus.ACTIVE

    def test_one_price_lookup_per_symbol(
        self, evaluator: Evaluator, registry: MagicMock, oracle: MagicMock,
    ) -> None:
        registry.claim_expired.return_value = [_claimed(pid=1), _claimed(pid=2, user_id="u2")]
        report = evaluator.evaluate_expired()
        assert report.evaluated == 2
        oracle.get_live_price.assert_called_once_with("bitcoin")

    def test_failure_isolated_and_released(self, evaluator: Evaluator, registry: MagicMock) -> None:
        registry.claim_expired.return_value = [_claimed(pid=1), _claimed(pid=2, user_id="u2")]
        registry.settle_prediction.side_effect = [RuntimeError("db blip"), True]

        report = evaluator.evaluate_expired()

        assert report.failed == 1
        assert report.evaluated == 1
        registry.release_claim.assert_called_once_with(1)

    def test_lost_race_counts_nothing(
        self, evaluator: Evaluator, registry: MagicMock, badges: MagicMock,
    ) -> None:
        registry.settle_prediction.return_value = False
        registry.claim_expired.return_value = [_claimed()]

        report = evaluator.evaluate_expired()

        assert report.claimed == 1
        assert report.evaluated == 0 and report.failed == 0
        badges.check_and_award_badges.assert_not_called()

    def test_badges_and_push_after_settle(
        self, evaluator: Evaluator, registry: MagicMock, badges: MagicMock, push: MagicMock,
    ) -> None:
        registry.claim_expired.return_value = [_claimed(pid=3)]
        evaluator.evaluate_expired()

        badges.check_and_award_badges.assert_called_once_with("u1")
        payload = push.broadcast_leaderboard_update.call_args[0][0]
        assert payload == {"type": "prediction_evaluated", "predictionId": 3, "userId": "u1",
                           "result": "correct", "pointsAwarded": 10}

    def test_collaborator_failures_swallowed(
        self, evaluator: Evaluator, registry: MagicMock, badges: MagicMock, push: MagicMock,
    ) -> None:
        badges.check_and_award_badges.side_effect = RuntimeError("badges down")
        push.broadcast_leaderboard_update.side_effect = RuntimeError("push down")
        registry.claim_expired.return_value = [_claimed()]

        report = evaluator.evaluate_expired()

        assert report.evaluated == 1
        registry.release_claim.assert_not_called()

    def test_unclaimed_prediction_is_never_written(self, evaluator: Evaluator, registry: MagicMock) -> None:
        p = _claimed(pid=5)
        p.status = PredictionStatus.ACTIVE
        registry.claim_expired.return_value = [p]

        report = evaluator.evaluate_expired()

        assert report.failed == 1 and report.evaluated == 0
        registry.settle_prediction.assert_not_called()
        registry.release_claim.assert_not_called()

    def test_settled_prediction_cannot_be_released(self, evaluator: Evaluator, registry: MagicMock) -> None:
        p = _claimed(pid=6)
        p.status = PredictionStatus.EVALUATED
        registry.claim_expired.return_value = [p]

        report = evaluator.evaluate_expired()

        assert report.failed == 1
        registry.settle_prediction.assert_not_called()
        registry.release_claim.assert_not_called()


class TestEvaluateOne:
    def test_not_claimable(self, evaluator: Evaluator, registry: MagicMock) -> None:
        registry.claim_prediction.return_value = None
        assert evaluator.evaluate_one(9).claimed == 0

    def test_settles_claimed(self, evaluator: Evaluator, registry: MagicMock) -> None:
        registry.claim_prediction.return_value = _claimed(pid=9)
        report = evaluator.evaluate_one(9)
        assert report.to_dict() == {"claimed": 1, "evaluated": 1, "correct": 1,
                                    "incorrect": 0, "deferred": 0, "failed": 0}
        registry.claim_prediction.assert_called_once_with(9, NOW, timedelta(minutes=15))
