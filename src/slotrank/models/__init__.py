from __future__ import annotations

from slotrank.models.asset import DEFAULT_ASSETS, Asset, AssetClass, validate_symbol
from slotrank.models.duration import (
    PARTITION_SCHEMES,
    SLOT_POINTS,
    DurationClass,
    PartitionScheme,
    PeriodUnit,
    parse_duration,
)
from slotrank.models.prediction import (
    VALID_TRANSITIONS,
    Direction,
    Prediction,
    PredictionResult,
    PredictionStatus,
    parse_direction,
    validate_transition,
)
from slotrank.models.profile import Badge, LeaderboardEntry, MonthlyScore, ProfileAggregate, User

__all__ = [
    # asset
    "Asset",
    "AssetClass",
    "DEFAULT_ASSETS",
    "validate_symbol",
    # duration
    "DurationClass",
    "PeriodUnit",
    "PartitionScheme",
    "PARTITION_SCHEMES",
    "SLOT_POINTS",
    "parse_duration",
    # prediction
    "Direction",
    "PredictionStatus",
    "PredictionResult",
    "Prediction",
    "VALID_TRANSITIONS",
    "validate_transition",
    "parse_direction",
    # profile
    "User",
    "ProfileAggregate",
    "LeaderboardEntry",
    "MonthlyScore",
    "Badge",
]
