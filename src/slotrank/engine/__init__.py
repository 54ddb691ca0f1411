from slotrank.engine.evaluator import EvaluationReport, Evaluator
from slotrank.engine.leaderboard import LeaderboardService, RolloverResult, rank_profiles
from slotrank.engine.lifecycle import PredictionManager

__all__ = [
    "EvaluationReport",
    "Evaluator",
    "LeaderboardService",
    "PredictionManager",
    "RolloverResult",
    "rank_profiles",
]
