from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal

import psycopg.errors

from slotrank.errors import DuplicatePrediction
from slotrank.models.asset import Asset, AssetClass
from slotrank.models.duration import DurationClass
from slotrank.models.prediction import Direction, Prediction, PredictionResult, PredictionStatus
from slotrank.models.profile import Badge, MonthlyScore, ProfileAggregate, User
from slotrank.registry.db import Database

logger = logging.getLogger(__name__)

_PREDICTION_COLUMNS = (
    "id, user_id, asset_symbol, direction, duration, slot_index, slot_start, slot_end, "
    "expires_at, status, result, points_awarded, price_start, price_end, evaluated_at, created_at"
)


class Registry:
    """Query layer bridging Python models and the slotrank schema."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several registry calls into one atomic unit."""
        with self._db.transaction():
            yield

    # ------------------------------------------------------------------
    # Users (read-only, provisioned externally)
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> User | None:
        rows = self._db.execute(
            "SELECT id, username, email_verified, role FROM slotrank.users WHERE id = %s",
            (user_id,),
        )
        if not rows:
            return None
        r = rows[0]
        return User(
            id=r["id"],
            username=r["username"],
            email_verified=bool(r["email_verified"]),
            role=r["role"],
        )

    # ------------------------------------------------------------------
    # Asset catalogue
    # ------------------------------------------------------------------

    def upsert_assets(self, assets: list[Asset]) -> int:
        """Insert or update assets. Returns count of affected rows."""
        query = """
            INSERT INTO slotrank.assets (symbol, name, asset_class, is_active, updated_at)
            VALUES (%s, %s, %s, %s, NOW())
            ON CONFLICT (symbol) DO UPDATE SET
                name = EXCLUDED.name,
                asset_class = EXCLUDED.asset_class,
                is_active = EXCLUDED.is_active,
                updated_at = NOW()
        """
        params = [(a.symbol, a.name, a.asset_class.value, a.is_active) for a in assets]
        return self._db.execute_many(query, params)

    def get_asset(self, symbol: str) -> Asset | None:
        """Look up an asset by symbol, active or not."""
        rows = self._db.execute(
            "SELECT symbol, name, asset_class, is_active FROM slotrank.assets WHERE symbol = %s",
            (symbol,),
        )
        if not rows:
            return None
        return self._row_to_asset(rows[0])

    def get_active_assets(self) -> list[Asset]:
        rows = self._db.execute(
            "SELECT symbol, name, asset_class, is_active "
            "FROM slotrank.assets WHERE is_active = TRUE ORDER BY symbol"
        )
        return [self._row_to_asset(r) for r in rows]

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def store_price(self, symbol: str, price: Decimal, source: str) -> None:
        self._db.execute(
            "INSERT INTO slotrank.asset_prices (symbol, price, source) VALUES (%s, %s, %s)",
            (symbol, price, source),
        )

    def get_latest_price(self, symbol: str) -> Decimal | None:
        point = self.get_price_point(symbol)
        return point["price"] if point else None

    def get_price_point(self, symbol: str) -> dict | None:
        """Most recent persisted price with its source and fetch time."""
        rows = self._db.execute(
            "SELECT price, source, fetched_at FROM slotrank.asset_prices WHERE symbol = %s "
            "ORDER BY fetched_at DESC LIMIT 1",
            (symbol,),
        )
        if not rows or rows[0]["price"] is None:
            return None
        return {**rows[0], "price": Decimal(str(rows[0]["price"]))}

    def get_price_history(self, symbol: str, since: datetime) -> list[dict]:
        """Persisted prices fetched at or after ``since``, newest first."""
        rows = self._db.execute(
            "SELECT price, source, fetched_at FROM slotrank.asset_prices "
            "WHERE symbol = %s AND fetched_at >= %s ORDER BY fetched_at DESC",
            (symbol, since),
        )
        return [{**r, "price": Decimal(str(r["price"]))} for r in rows if r["price"] is not None]

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def find_prediction(
        self, user_id: str, symbol: str, duration: DurationClass, slot_index: int, slot_start: datetime,
    ) -> Prediction | None:
        rows = self._db.execute(
            f"SELECT {_PREDICTION_COLUMNS} FROM slotrank.predictions "
            "WHERE user_id = %s AND asset_symbol = %s AND duration = %s "
            "AND slot_index = %s AND slot_start = %s",
            (user_id, symbol, duration.value, slot_index, slot_start),
        )
        return self._row_to_prediction(rows[0]) if rows else None

    def get_prediction(self, prediction_id: int) -> Prediction | None:
        rows = self._db.execute(
            f"SELECT {_PREDICTION_COLUMNS} FROM slotrank.predictions WHERE id = %s",
            (prediction_id,),
        )
        return self._row_to_prediction(rows[0]) if rows else None

    def create_prediction(self, prediction: Prediction) -> Prediction:
        """Insert a prediction and bump the owner's lifetime counter atomically.

        Raises DuplicatePrediction when the uniqueness constraint fires.
        """
        try:
            with self._db.transaction():
                rows = self._db.execute(
                    "INSERT INTO slotrank.predictions "
                    "(user_id, asset_symbol, direction, duration, slot_index, slot_start, "
                    "slot_end, expires_at, status, result, price_start) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s) "
                    "RETURNING id, created_at",
                    (
                        prediction.user_id, prediction.asset_symbol, prediction.direction.value,
                        prediction.duration.value, prediction.slot_index, prediction.slot_start,
                        prediction.slot_end, prediction.expires_at, prediction.status.value,
                        prediction.result.value, prediction.price_start,
                    ),
                )
                self._db.execute(
                    "INSERT INTO slotrank.profiles (user_id, total_predictions) VALUES (%s, 1) "
                    "ON CONFLICT (user_id) DO UPDATE SET "
                    "total_predictions = slotrank.profiles.total_predictions + 1, "
                    "updated_at = NOW()",
                    (prediction.user_id,),
                )
        except psycopg.errors.UniqueViolation:
            raise DuplicatePrediction(
                f"Prediction already exists for {prediction.asset_symbol} "
                f"{prediction.duration} slot {prediction.slot_index}"
            ) from None
        prediction.id = rows[0]["id"]
        prediction.created_at = rows[0]["created_at"]
        return prediction

    def list_user_predictions(
        self,
        user_id: str,
        status: PredictionStatus | None = None,
        symbol: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Prediction]:
        conditions = ["user_id = %s"]
        params: list = [user_id]
        if status is not None:
            conditions.append("status = %s")
            params.append(status.value)
        if symbol is not None:
            conditions.append("asset_symbol = %s")
            params.append(symbol)
        params.extend([limit, offset])
        rows = self._db.execute(
            f"SELECT {_PREDICTION_COLUMNS} FROM slotrank.predictions "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s",
            params,
        )
        return [self._row_to_prediction(r) for r in rows]

    def get_user_prediction_stats(self, user_id: str) -> dict:
        rows = self._db.execute(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE status = 'active') AS active,
                COUNT(*) FILTER (WHERE status = 'evaluated') AS evaluated,
                COUNT(*) FILTER (WHERE result = 'correct') AS correct,
                COUNT(*) FILTER (WHERE result = 'incorrect') AS incorrect,
                COALESCE(SUM(points_awarded), 0) AS points
            FROM slotrank.predictions
            WHERE user_id = %s
            """,
            (user_id,),
        )
        r = rows[0] if rows else {}
        return {k: int(r.get(k) or 0) for k in ("total", "active", "evaluated", "correct", "incorrect", "points")}

    def get_sentiment_counts(
        self, symbol: str, duration: DurationClass, period_start: datetime, period_end: datetime,
    ) -> list[dict]:
        """Up/down counts per slot for predictions placed in one period."""
        return self._db.execute(
            """
            SELECT
                slot_index,
                COUNT(*) FILTER (WHERE direction = 'up') AS up_count,
                COUNT(*) FILTER (WHERE direction = 'down') AS down_count
            FROM slotrank.predictions
            WHERE asset_symbol = %s AND duration = %s
              AND slot_start >= %s AND slot_start < %s
            GROUP BY slot_index
            ORDER BY slot_index
            """,
            (symbol, duration.value, period_start, period_end),
        )

    def get_global_sentiment_counts(
        self, duration: DurationClass, period_start: datetime, period_end: datetime,
    ) -> list[dict]:
        """Up/down counts per slot across every asset for one period."""
        return self._db.execute(
            """
            SELECT
                slot_index,
                COUNT(*) FILTER (WHERE direction = 'up') AS up_count,
                COUNT(*) FILTER (WHERE direction = 'down') AS down_count
            FROM slotrank.predictions
            WHERE duration = %s AND slot_start >= %s AND slot_start < %s
            GROUP BY slot_index
            ORDER BY slot_index
            """,
            (duration.value, period_start, period_end),
        )

    def get_asset_direction_counts(self, start: datetime, end: datetime) -> list[dict]:
        """Up/down counts per asset for predictions placed in ``[start, end)``."""
        return self._db.execute(
            """
            SELECT
                p.asset_symbol,
                a.name,
                COUNT(*) FILTER (WHERE p.direction = 'up') AS up_count,
                COUNT(*) FILTER (WHERE p.direction = 'down') AS down_count
            FROM slotrank.predictions p
            JOIN slotrank.assets a ON a.symbol = p.asset_symbol
            WHERE p.created_at >= %s AND p.created_at < %s
            GROUP BY p.asset_symbol, a.name
            ORDER BY p.asset_symbol
            """,
            (start, end),
        )

    def get_status_counts(self) -> dict[str, int]:
        rows = self._db.execute(
            "SELECT status, COUNT(*) AS n FROM slotrank.predictions GROUP BY status"
        )
        counts = {s.value: 0 for s in PredictionStatus}
        for r in rows:
            counts[r["status"]] = int(r["n"])
        return counts

    # ------------------------------------------------------------------
    # Evaluation: claim, release, settle
    # ------------------------------------------------------------------

    def claim_expired(self, now: datetime, claim_timeout: timedelta, limit: int) -> list[Prediction]:
        """Move expired ``active`` predictions to ``evaluating`` and return them.

        Claims older than ``claim_timeout`` are taken over; their evaluator is
        assumed dead. Rows locked by a concurrent claimer are skipped.
        """
        rows = self._db.execute(
            f"""
            UPDATE slotrank.predictions
            SET status = 'evaluating', claimed_at = %s
            WHERE id IN (
                SELECT id FROM slotrank.predictions
                WHERE (status = 'active' AND expires_at < %s)
                   OR (status = 'evaluating' AND claimed_at < %s)
                ORDER BY expires_at
                LIMIT %s
                FOR UPDATE SKIP LOCKED
            )
            RETURNING {_PREDICTION_COLUMNS}
            """,
            (now, now, now - claim_timeout, limit),
        )
        return [self._row_to_prediction(r) for r in rows]

    def claim_prediction(self, prediction_id: int, now: datetime, claim_timeout: timedelta) -> Prediction | None:
        """Claim one expired prediction by id, or None if it is not claimable."""
        rows = self._db.execute(
            f"""
            UPDATE slotrank.predictions
            SET status = 'evaluating', claimed_at = %s
            WHERE id = %s AND expires_at < %s
              AND (status = 'active' OR (status = 'evaluating' AND claimed_at < %s))
            RETURNING {_PREDICTION_COLUMNS}
            """,
            (now, prediction_id, now, now - claim_timeout),
        )
        return self._row_to_prediction(rows[0]) if rows else None

    def release_claim(self, prediction_id: int) -> None:
        """Return a claimed prediction to ``active`` for a later run."""
        self._db.execute(
            "UPDATE slotrank.predictions SET status = 'active', claimed_at = NULL "
            "WHERE id = %s AND status = 'evaluating'",
            (prediction_id,),
        )

    def settle_prediction(
        self,
        prediction_id: int,
        user_id: str,
        result: PredictionResult,
        points: int,
        price_end: Decimal,
        now: datetime,
    ) -> bool:
        """Finalize a claimed prediction and apply its points to the profile.

        Both writes commit together. Returns False, writing nothing, when the
        prediction is no longer in ``evaluating`` (settled by someone else).
        """
        correct = 1 if result == PredictionResult.CORRECT else 0
        with self._db.transaction():
            rows = self._db.execute(
                "UPDATE slotrank.predictions SET status = 'evaluated', result = %s, "
                "points_awarded = %s, price_end = %s, evaluated_at = %s, claimed_at = NULL "
                "WHERE id = %s AND status = 'evaluating' RETURNING id",
                (result.value, points, price_end, now, prediction_id),
            )
            if not rows:
                return False
            self._db.execute(
                """
                INSERT INTO slotrank.profiles
                    (user_id, monthly_score, monthly_predictions, monthly_correct, total_score)
                VALUES (%s, %s, 1, %s, %s)
                ON CONFLICT (user_id) DO UPDATE SET
                    monthly_score = slotrank.profiles.monthly_score + EXCLUDED.monthly_score,
                    monthly_predictions = slotrank.profiles.monthly_predictions + 1,
                    monthly_correct = slotrank.profiles.monthly_correct + EXCLUDED.monthly_correct,
                    total_score = slotrank.profiles.total_score + EXCLUDED.total_score,
                    updated_at = NOW()
                """,
                (user_id, points, correct, points),
            )
        return True

    # ------------------------------------------------------------------
    # Profiles and current-period ranking
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> ProfileAggregate | None:
        rows = self._db.execute(
            "SELECT p.*, u.username FROM slotrank.profiles p "
            "JOIN slotrank.users u ON u.id = p.user_id WHERE p.user_id = %s",
            (user_id,),
        )
        return self._row_to_profile(rows[0]) if rows else None

    def list_profiles_by_monthly_score(self, limit: int) -> list[ProfileAggregate]:
        rows = self._db.execute(
            "SELECT p.*, u.username FROM slotrank.profiles p "
            "JOIN slotrank.users u ON u.id = p.user_id "
            "ORDER BY p.monthly_score DESC, p.user_id ASC LIMIT %s",
            (limit,),
        )
        return [self._row_to_profile(r) for r in rows]

    def count_profiles_ahead(self, user_id: str, monthly_score: int) -> int:
        """Profiles that sort before this one: higher score, or equal with lower id."""
        rows = self._db.execute(
            "SELECT COUNT(*) AS n FROM slotrank.profiles "
            "WHERE monthly_score > %s OR (monthly_score = %s AND user_id < %s)",
            (monthly_score, monthly_score, user_id),
        )
        return int(rows[0]["n"]) if rows else 0

    def count_scoring_profiles(self) -> int:
        rows = self._db.execute("SELECT COUNT(*) AS n FROM slotrank.profiles WHERE monthly_score > 0")
        return int(rows[0]["n"]) if rows else 0

    def aggregate_period_scores(self, start: datetime, end: datetime, limit: int) -> list[dict]:
        """Per-user totals for predictions whose slot starts in ``[start, end)``."""
        return self._db.execute(
            """
            SELECT
                p.user_id,
                u.username,
                COALESCE(SUM(p.points_awarded) FILTER (WHERE p.status = 'evaluated'), 0) AS total_score,
                COUNT(*) AS total_predictions,
                COUNT(*) FILTER (WHERE p.result = 'correct') AS correct_predictions
            FROM slotrank.predictions p
            JOIN slotrank.users u ON u.id = p.user_id
            WHERE p.slot_start >= %s AND p.slot_start < %s
            GROUP BY p.user_id, u.username
            ORDER BY total_score DESC, p.user_id ASC
            LIMIT %s
            """,
            (start, end, limit),
        )

    # ------------------------------------------------------------------
    # Monthly rollover
    # ------------------------------------------------------------------

    def claim_rollover_period(self, period_key: str, baseline: bool = False) -> bool:
        """Record a period as rolled over. False if it already was."""
        rows = self._db.execute(
            "INSERT INTO slotrank.rollover_periods (period_key, is_baseline) VALUES (%s, %s) "
            "ON CONFLICT (period_key) DO NOTHING RETURNING period_key",
            (period_key, baseline),
        )
        return bool(rows)

    def set_rollover_ranked_count(self, period_key: str, ranked_count: int) -> None:
        self._db.execute(
            "UPDATE slotrank.rollover_periods SET ranked_count = %s WHERE period_key = %s",
            (ranked_count, period_key),
        )

    def latest_rollover_period(self) -> str | None:
        rows = self._db.execute(
            "SELECT period_key FROM slotrank.rollover_periods ORDER BY period_key DESC LIMIT 1"
        )
        return rows[0]["period_key"] if rows else None

    def lock_profiles(self) -> list[ProfileAggregate]:
        """Lock every profile row for the rest of the enclosing transaction."""
        rows = self._db.execute(
            "SELECT p.*, u.username FROM slotrank.profiles p "
            "JOIN slotrank.users u ON u.id = p.user_id "
            "ORDER BY p.user_id FOR UPDATE OF p"
        )
        return [self._row_to_profile(r) for r in rows]

    def archive_leaderboard(self, period_key: str, entries: list[ProfileAggregate], ranks: dict[str, int]) -> int:
        query = """
            INSERT INTO slotrank.monthly_leaderboards
                (month_year, user_id, username, rank, total_score, total_predictions,
                 correct_predictions, accuracy_percentage)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (month_year, user_id) DO NOTHING
        """
        params = [
            (
                period_key, p.user_id, p.username, ranks[p.user_id], p.monthly_score,
                p.monthly_predictions, p.monthly_correct, p.monthly_accuracy,
            )
            for p in entries
        ]
        return self._db.execute_many(query, params)

    def archive_monthly_scores(self, period_key: str, profiles: list[ProfileAggregate], ranks: dict[str, int]) -> int:
        query = """
            INSERT INTO slotrank.monthly_scores
                (user_id, month_year, score, rank, total_predictions, correct_predictions)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, month_year) DO NOTHING
        """
        params = [
            (p.user_id, period_key, p.monthly_score, ranks.get(p.user_id),
             p.monthly_predictions, p.monthly_correct)
            for p in profiles
        ]
        return self._db.execute_many(query, params)

    def reset_monthly_profiles(self, ranks: dict[str, int]) -> None:
        """Zero every monthly counter and record last month's rank (null if unranked)."""
        self._db.execute(
            "UPDATE slotrank.profiles SET monthly_score = 0, monthly_predictions = 0, "
            "monthly_correct = 0, last_month_rank = NULL, updated_at = NOW()"
        )
        if ranks:
            self._db.execute_many(
                "UPDATE slotrank.profiles SET last_month_rank = %s WHERE user_id = %s",
                [(rank, user_id) for user_id, rank in ranks.items()],
            )

    def get_monthly_leaderboard(self, period_key: str, limit: int) -> list[dict]:
        return self._db.execute(
            """
            SELECT
                ml.rank, ml.user_id, ml.username, ml.total_score, ml.total_predictions,
                ml.correct_predictions,
                COALESCE(
                    array_agg(b.badge_type ORDER BY b.badge_type) FILTER (WHERE b.id IS NOT NULL),
                    '{}'
                ) AS badges
            FROM slotrank.monthly_leaderboards ml
            LEFT JOIN slotrank.user_badges b
                ON b.user_id = ml.user_id AND b.month_year = ml.month_year
            WHERE ml.month_year = %s
            GROUP BY ml.id
            ORDER BY ml.rank ASC
            LIMIT %s
            """,
            (period_key, limit),
        )

    def count_leaderboard_entries(self, period_key: str) -> int:
        rows = self._db.execute(
            "SELECT COUNT(*) AS n FROM slotrank.monthly_leaderboards WHERE month_year = %s",
            (period_key,),
        )
        return int(rows[0]["n"]) if rows else 0

    def get_monthly_history(self, user_id: str, limit: int = 12) -> list[MonthlyScore]:
        rows = self._db.execute(
            "SELECT user_id, month_year, score, rank, total_predictions, correct_predictions "
            "FROM slotrank.monthly_scores WHERE user_id = %s "
            "ORDER BY month_year DESC LIMIT %s",
            (user_id, limit),
        )
        return [
            MonthlyScore(
                user_id=r["user_id"],
                period_key=r["month_year"],
                score=r["score"],
                rank=r["rank"],
                total_predictions=r["total_predictions"],
                correct_predictions=r["correct_predictions"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------------

    def insert_badge(self, badge: Badge) -> bool:
        """Store a badge. False if the user already holds it for that period."""
        rows = self._db.execute(
            "INSERT INTO slotrank.user_badges "
            "(user_id, badge_type, badge_name, month_year, rank, total_score) "
            "VALUES (%s, %s, %s, %s, %s, %s) "
            "ON CONFLICT (user_id, badge_type, month_year) DO NOTHING RETURNING id",
            (badge.user_id, badge.badge_type, badge.name, badge.period_key, badge.rank, badge.total_score),
        )
        return bool(rows)

    def get_user_badges(self, user_id: str) -> list[Badge]:
        rows = self._db.execute(
            "SELECT user_id, badge_type, badge_name, month_year, rank, total_score, created_at "
            "FROM slotrank.user_badges WHERE user_id = %s ORDER BY created_at DESC",
            (user_id,),
        )
        return [
            Badge(
                user_id=r["user_id"],
                badge_type=r["badge_type"],
                period_key=r["month_year"],
                name=r["badge_name"],
                rank=r["rank"],
                total_score=r["total_score"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def count_correct_predictions(self, user_id: str) -> int:
        rows = self._db.execute(
            "SELECT COUNT(*) AS n FROM slotrank.predictions WHERE user_id = %s AND result = 'correct'",
            (user_id,),
        )
        return int(rows[0]["n"]) if rows else 0

    # ------------------------------------------------------------------
    # Row mappers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_asset(r: dict) -> Asset:
        return Asset(
            symbol=r["symbol"],
            name=r["name"],
            asset_class=AssetClass(r["asset_class"]),
            is_active=r["is_active"],
        )

    @staticmethod
    def _row_to_profile(r: dict) -> ProfileAggregate:
        return ProfileAggregate(
            user_id=r["user_id"],
            monthly_score=r.get("monthly_score") or 0,
            monthly_predictions=r.get("monthly_predictions") or 0,
            monthly_correct=r.get("monthly_correct") or 0,
            total_score=r.get("total_score") or 0,
            total_predictions=r.get("total_predictions") or 0,
            last_month_rank=r.get("last_month_rank"),
            username=r.get("username") or "",
        )

    @staticmethod
    def _row_to_prediction(r: dict) -> Prediction:
        return Prediction(
            id=r["id"],
            user_id=r["user_id"],
            asset_symbol=r["asset_symbol"],
            direction=Direction(r["direction"]),
            duration=DurationClass(r["duration"]),
            slot_index=r["slot_index"],
            slot_start=r["slot_start"],
            slot_end=r["slot_end"],
            expires_at=r["expires_at"],
            status=PredictionStatus(r["status"]),
            result=PredictionResult(r["result"]),
            points_awarded=r["points_awarded"],
            price_start=Decimal(str(r["price_start"])),
            price_end=Decimal(str(r["price_end"])) if r["price_end"] is not None else None,
            evaluated_at=r["evaluated_at"],
            created_at=r["created_at"],
        )
