from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from slotrank.errors import ValidationError
from slotrank.models.duration import DurationClass


class Direction(StrEnum):
    UP = "up"
    DOWN = "down"


class PredictionStatus(StrEnum):
    ACTIVE = "active"
    EVALUATING = "evaluating"  # claimed by an evaluator run, not yet settled
    EVALUATED = "evaluated"


class PredictionResult(StrEnum):
    PENDING = "pending"
    CORRECT = "correct"
    INCORRECT = "incorrect"


VALID_TRANSITIONS: dict[PredictionStatus, set[PredictionStatus]] = {
    PredictionStatus.ACTIVE: {PredictionStatus.EVALUATING},
    # Released back to ACTIVE when no price is available.
    PredictionStatus.EVALUATING: {PredictionStatus.EVALUATED, PredictionStatus.ACTIVE},
    PredictionStatus.EVALUATED: set(),
}


def validate_transition(current: PredictionStatus, target: PredictionStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def parse_direction(value: str | Direction) -> Direction:
    if isinstance(value, Direction):
        return value
    try:
        return Direction(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid direction {value!r}. Use 'up' or 'down'") from None


@dataclass
class Prediction:
    user_id: str
    asset_symbol: str
    direction: Direction
    duration: DurationClass
    slot_index: int
    slot_start: datetime
    slot_end: datetime
    expires_at: datetime
    price_start: Decimal
    status: PredictionStatus = PredictionStatus.ACTIVE
    result: PredictionResult = PredictionResult.PENDING
    points_awarded: int | None = None
    price_end: Decimal | None = None
    evaluated_at: datetime | None = None
    id: int | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status == PredictionStatus.EVALUATED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "assetSymbol": self.asset_symbol,
            "direction": self.direction.value,
            "duration": self.duration.value,
            "slotNumber": self.slot_index,
            "slotStart": self.slot_start.isoformat(),
            "slotEnd": self.slot_end.isoformat(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "expiresAt": self.expires_at.isoformat(),
            "status": self.status.value,
            "result": self.result.value,
            "pointsAwarded": self.points_awarded,
            "priceStart": float(self.price_start),
            "priceEnd": float(self.price_end) if self.price_end is not None else None,
            "evaluatedAt": self.evaluated_at.isoformat() if self.evaluated_at else None,
        }
