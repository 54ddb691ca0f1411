from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """Identity record owned by the external auth system. Read-only here."""

    id: str
    username: str
    email_verified: bool = False
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class ProfileAggregate:
    user_id: str
    monthly_score: int = 0
    monthly_predictions: int = 0
    monthly_correct: int = 0
    total_score: int = 0
    total_predictions: int = 0
    last_month_rank: int | None = None
    username: str = ""

    @property
    def monthly_accuracy(self) -> float:
        if self.monthly_predictions == 0:
            return 0.0
        return round(self.monthly_correct / self.monthly_predictions * 100, 2)


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: str
    username: str
    total_score: int
    total_predictions: int
    correct_predictions: int
    badges: list[str] = field(default_factory=list)

    @property
    def accuracy_percentage(self) -> float:
        if self.total_predictions == 0:
            return 0.0
        return round(self.correct_predictions / self.total_predictions * 100, 2)

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "userId": self.user_id,
            "username": self.username,
            "totalScore": self.total_score,
            "totalPredictions": self.total_predictions,
            "correctPredictions": self.correct_predictions,
            "accuracyPercentage": self.accuracy_percentage,
            "badges": self.badges,
        }


@dataclass
class MonthlyScore:
    user_id: str
    period_key: str
    score: int
    rank: int | None
    total_predictions: int
    correct_predictions: int

    def to_dict(self) -> dict:
        return {
            "monthYear": self.period_key,
            "score": self.score,
            "rank": self.rank,
            "totalPredictions": self.total_predictions,
            "correctPredictions": self.correct_predictions,
        }


@dataclass
class Badge:
    user_id: str
    badge_type: str
    period_key: str  # "YYYY-MM" or "lifetime"
    name: str
    rank: int | None = None
    total_score: int | None = None
    created_at: datetime | None = None
