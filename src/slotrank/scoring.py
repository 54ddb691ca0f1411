"""Points for correct bets, penalties for incorrect ones."""

from __future__ import annotations

import math
from decimal import Decimal

from slotrank.errors import InvalidSlot
from slotrank.models.duration import SLOT_POINTS, DurationClass
from slotrank.models.prediction import Direction

MIN_PENALTY = -1


def points_for_slot(duration: DurationClass, slot_index: int) -> int:
    points = SLOT_POINTS[duration]
    if not 1 <= slot_index <= len(points):
        raise InvalidSlot(f"Invalid slot number {slot_index} for duration {duration}")
    return points[slot_index - 1]


def penalty_for(duration: DurationClass, slot_index: int) -> int:
    """Half the potential reward, floored. Always costs at least one point."""
    return min(MIN_PENALTY, math.floor(-points_for_slot(duration, slot_index) / 2))


def score_outcome(duration: DurationClass, slot_index: int, correct: bool) -> int:
    if correct:
        return points_for_slot(duration, slot_index)
    return penalty_for(duration, slot_index)


def is_correct(direction: Direction, price_start: Decimal, price_end: Decimal) -> bool:
    # No push outcome: an unchanged price loses in both directions.
    if direction == Direction.UP:
        return price_end > price_start
    return price_end < price_start


def points_table() -> dict[str, list[dict]]:
    """Display form of every table, with the matching penalty per slot."""
    return {
        duration.value: [
            {
                "slotNumber": i,
                "pointsIfCorrect": points_for_slot(duration, i),
                "penaltyIfWrong": penalty_for(duration, i),
            }
            for i in range(1, len(SLOT_POINTS[duration]) + 1)
        ]
        for duration in DurationClass
    }
