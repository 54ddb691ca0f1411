from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from slotrank.collaborators import BadgeService, NullBadgeService, NullPushTransport, PushTransport
from slotrank.models.prediction import Prediction, PredictionResult, PredictionStatus, validate_transition
from slotrank.pricing.oracle import PriceOracle, fetch_price
from slotrank.registry.queries import Registry
from slotrank.scoring import is_correct, score_outcome

logger = logging.getLogger(__name__)

DEFAULT_CLAIM_TIMEOUT = timedelta(minutes=15)
DEFAULT_BATCH_SIZE = 500


def _check_transition(prediction: Prediction, target: PredictionStatus) -> None:
    if not validate_transition(prediction.status, target):
        raise ValueError(
            f"Invalid transition for prediction {prediction.id}: "
            f"{prediction.status.value} -> {target.value}"
        )


@dataclass
class EvaluationReport:
    claimed: int = 0
    evaluated: int = 0
    correct: int = 0
    deferred: int = 0
    failed: int = 0

    @property
    def incorrect(self) -> int:
        return self.evaluated - self.correct

    def to_dict(self) -> dict:
        return {
            "claimed": self.claimed,
            "evaluated": self.evaluated,
            "correct": self.correct,
            "incorrect": self.incorrect,
            "deferred": self.deferred,
            "failed": self.failed,
        }


class Evaluator:
    """Settles predictions whose slot has closed.

    Each run claims a batch (``active`` to ``evaluating``) in one statement, so
    overlapping runs never score the same prediction. Every claimed
    prediction is then handled on its own: a missing price or an error puts
    it back to ``active`` for the next run without touching the others.
    """

    def __init__(
        self,
        registry: Registry,
        oracle: PriceOracle,
        badges: BadgeService | None = None,
        push: PushTransport | None = None,
        claim_timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._registry = registry
        self._oracle = oracle
        self._badges = badges or NullBadgeService()
        self._push = push or NullPushTransport()
        self._claim_timeout = claim_timeout
        self._batch_size = batch_size
        self._clock = clock

    def evaluate_expired(self) -> EvaluationReport:
        report = EvaluationReport()
        now = self._clock()
        claimed = self._registry.claim_expired(now, self._claim_timeout, self._batch_size)
        report.claimed = len(claimed)
        if not claimed:
            logger.debug("No expired predictions to evaluate")
            return report

        logger.info("Evaluating %d expired predictions", len(claimed))
        prices: dict[str, object] = {}
        for prediction in claimed:
            self._evaluate_claimed(prediction, report, prices)

        logger.info(
            "Evaluation run: %d evaluated (%d correct), %d deferred, %d failed",
            report.evaluated, report.correct, report.deferred, report.failed,
        )
        return report

    def evaluate_one(self, prediction_id: int) -> EvaluationReport:
        """Claim and settle a single expired prediction by id."""
        report = EvaluationReport()
        prediction = self._registry.claim_prediction(prediction_id, self._clock(), self._claim_timeout)
        if prediction is None:
            logger.info("Prediction %s is not claimable", prediction_id)
            return report
        report.claimed = 1
        self._evaluate_claimed(prediction, report, {})
        return report

    def _evaluate_claimed(self, prediction: Prediction, report: EvaluationReport, prices: dict) -> None:
        try:
            settled = self._settle(prediction, prices)
        except Exception:
            report.failed += 1
            logger.exception("Evaluation failed for prediction %s", prediction.id)
            self._release(prediction)
            return

        if settled is None:
            report.deferred += 1
            return
        if not settled:
            # Lost the race to another evaluator; nothing was written.
            return

        report.evaluated += 1
        if prediction.result == PredictionResult.CORRECT:
            report.correct += 1
        self._after_settle(prediction)

    def _settle(self, prediction: Prediction, prices: dict) -> bool | None:
        """None when deferred for lack of a price, else whether this run settled it."""
        symbol = prediction.asset_symbol
        if symbol not in prices:
            prices[symbol] = fetch_price(self._oracle, symbol)
        price_end = prices[symbol]
        if price_end is None:
            logger.warning("No price for %s, deferring prediction %s", symbol, prediction.id)
            _check_transition(prediction, PredictionStatus.ACTIVE)
            self._registry.release_claim(prediction.id)
            prediction.status = PredictionStatus.ACTIVE
            return None

        correct = is_correct(prediction.direction, prediction.price_start, price_end)
        points = score_outcome(prediction.duration, prediction.slot_index, correct)
        result = PredictionResult.CORRECT if correct else PredictionResult.INCORRECT
        now = self._clock()

        _check_transition(prediction, PredictionStatus.EVALUATED)
        if not self._registry.settle_prediction(prediction.id, prediction.user_id, result, points, price_end, now):
            logger.info("Prediction %s was settled elsewhere", prediction.id)
            return False

        prediction.status = PredictionStatus.EVALUATED
        prediction.result = result
        prediction.points_awarded = points
        prediction.price_end = price_end
        prediction.evaluated_at = now
        logger.debug(
            "Prediction %s: %s %s -> %s, %s (%+d)",
            prediction.id, prediction.direction, prediction.price_start, price_end, result, points,
        )
        return True

    def _release(self, prediction: Prediction) -> None:
        try:
            _check_transition(prediction, PredictionStatus.ACTIVE)
            self._registry.release_claim(prediction.id)
            prediction.status = PredictionStatus.ACTIVE
        except Exception:
            logger.exception("Could not release claim on prediction %s", prediction.id)

    def _after_settle(self, prediction: Prediction) -> None:
        try:
            self._badges.check_and_award_badges(prediction.user_id)
        except Exception:
            logger.warning("Badge check failed for %s", prediction.user_id, exc_info=True)
        self._notify(prediction)

    def _notify(self, prediction: Prediction) -> None:
        try:
            self._push.broadcast_leaderboard_update({
                "type": "prediction_evaluated",
                "predictionId": prediction.id,
                "userId": prediction.user_id,
                "result": prediction.result.value,
                "pointsAwarded": prediction.points_awarded,
            })
        except Exception:
            logger.warning("Evaluation push failed for prediction %s", prediction.id, exc_info=True)
