from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo

from slotrank.collaborators import NullPushTransport, PushTransport
from slotrank.errors import (
    AssetUnavailable,
    DuplicatePrediction,
    InvalidSlot,
    NoActiveSlot,
    PriceUnavailable,
    ValidationError,
    VerificationRequired,
)
from slotrank.models.asset import validate_symbol
from slotrank.models.duration import DurationClass, parse_duration
from slotrank.models.prediction import Direction, Prediction, PredictionStatus, parse_direction
from slotrank.pricing.oracle import PriceOracle, fetch_price
from slotrank.registry.queries import Registry
from slotrank.slots import (
    DEFAULT_TIMEZONE,
    Slot,
    is_valid_for_new_bet,
    period_bounds,
    resolve_zone,
    slot_for,
    slots_for_period,
)

logger = logging.getLogger(__name__)

TOP_ASSET_PERIODS = (DurationClass.ONE_WEEK, DurationClass.ONE_MONTH, DurationClass.THREE_MONTHS)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PredictionManager:
    """Places predictions into the current slot and answers read queries about them."""

    def __init__(
        self,
        registry: Registry,
        oracle: PriceOracle,
        push: PushTransport | None = None,
        tz: str | tzinfo = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._registry = registry
        self._oracle = oracle
        self._push = push or NullPushTransport()
        self._tz = resolve_zone(tz)
        self._clock = clock

    def create_prediction(
        self,
        user_id: str,
        symbol: str,
        direction: str | Direction,
        duration: str | DurationClass,
    ) -> Prediction:
        """Place a bet on ``symbol`` for the slot of ``duration`` that contains now.

        Checks run in a fixed order and the first failure wins: verification,
        asset, slot, duplicate, price. The insert and the owner's lifetime
        counter commit together.
        """
        direction = parse_direction(direction)
        duration = parse_duration(duration)
        symbol = validate_symbol(symbol)

        user = self._registry.get_user(user_id)
        if user is None or not user.email_verified:
            raise VerificationRequired("Email verification required to place predictions")

        asset = self._registry.get_asset(symbol)
        if asset is None or not asset.is_active:
            raise AssetUnavailable(f"Asset {symbol} not found or inactive")

        now = self._clock()
        slot = slot_for(now, duration, self._tz)
        if not is_valid_for_new_bet(duration, slot.index, now, self._tz):
            raise InvalidSlot(f"Slot {slot.index} of {duration} is no longer accepting predictions")
        if not slot.contains(now):
            raise NoActiveSlot(f"No active slot for {duration}")

        if self._registry.find_prediction(user_id, symbol, duration, slot.index, slot.start) is not None:
            raise DuplicatePrediction(
                f"You already have a prediction for {symbol} {duration} slot {slot.index}"
            )

        price = fetch_price(self._oracle, symbol)
        if price is None:
            raise PriceUnavailable(f"No price available for {symbol}")

        prediction = self._registry.create_prediction(
            Prediction(
                user_id=user_id,
                asset_symbol=symbol,
                direction=direction,
                duration=duration,
                slot_index=slot.index,
                slot_start=slot.start,
                slot_end=slot.end,
                expires_at=slot.end,
                price_start=price,
            )
        )
        logger.info(
            "Prediction %s: %s %s %s slot %d at %s",
            prediction.id, user_id, direction, symbol, slot.index, price,
        )

        self._broadcast_sentiment(symbol, duration, now)
        return prediction

    def _broadcast_sentiment(self, symbol: str, duration: DurationClass, now: datetime) -> None:
        try:
            payload = self._sentiment_rows(symbol, duration, now)
            self._push.broadcast_sentiment_update(symbol, duration, payload)
        except Exception:
            logger.warning("Sentiment broadcast failed for %s %s", symbol, duration, exc_info=True)

    def list_user_predictions(
        self,
        user_id: str,
        status: str | PredictionStatus | None = None,
        symbol: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Prediction]:
        if status is not None and not isinstance(status, PredictionStatus):
            status = PredictionStatus(status)
        if symbol is not None:
            symbol = validate_symbol(symbol)
        return self._registry.list_user_predictions(
            user_id, status=status, symbol=symbol, limit=limit, offset=offset,
        )

    def get_sentiment(self, symbol: str, duration: str | DurationClass) -> list[dict]:
        """Up/down counts for every slot of the current period."""
        duration = parse_duration(duration)
        symbol = validate_symbol(symbol)
        if self._registry.get_asset(symbol) is None:
            raise AssetUnavailable(f"Asset {symbol} not found")
        return self._sentiment_rows(symbol, duration, self._clock())

    def _sentiment_rows(self, symbol: str, duration: DurationClass, now: datetime) -> list[dict]:
        start, end = period_bounds(now, duration, self._tz)
        counts = self._registry.get_sentiment_counts(symbol, duration, start, end)
        return _slot_counts(slots_for_period(now, duration, self._tz), counts)

    def get_sentiment_overview(self, symbol: str) -> list[dict]:
        """Current-period totals for ``symbol`` in every duration class."""
        symbol = validate_symbol(symbol)
        if self._registry.get_asset(symbol) is None:
            raise AssetUnavailable(f"Asset {symbol} not found")
        now = self._clock()
        overview = []
        for duration in DurationClass:
            rows = self._sentiment_rows(symbol, duration, now)
            up = sum(r["upCount"] for r in rows)
            down = sum(r["downCount"] for r in rows)
            overview.append({"duration": duration.value, **_summary(up, down)})
        return overview

    def get_global_sentiment(self, duration: str | DurationClass) -> dict:
        """Per-slot counts across every asset for the current period of ``duration``."""
        duration = parse_duration(duration)
        now = self._clock()
        start, end = period_bounds(now, duration, self._tz)
        counts = self._registry.get_global_sentiment_counts(duration, start, end)
        rows = _slot_counts(slots_for_period(now, duration, self._tz), counts)
        return {
            "duration": duration.value,
            "slots": rows,
            "summary": _summary(sum(r["upCount"] for r in rows), sum(r["downCount"] for r in rows)),
            "timestamp": now.isoformat(),
        }

    def get_top_assets(self, period: str | DurationClass = DurationClass.ONE_WEEK, limit: int = 5) -> dict:
        """Most-backed assets in each direction over the current week, month or quarter.

        An asset listed under ``topUp`` is left out of ``topDown``.
        """
        period = parse_duration(period)
        if period not in TOP_ASSET_PERIODS:
            valid = ", ".join(p.value for p in TOP_ASSET_PERIODS)
            raise ValidationError(f"Invalid period {period}. Use one of: {valid}")
        start, end = period_bounds(self._clock(), period, self._tz)

        entries = []
        for r in self._registry.get_asset_direction_counts(start, end):
            up, down = int(r["up_count"] or 0), int(r["down_count"] or 0)
            total = up + down
            entries.append({
                "symbol": r["asset_symbol"],
                "name": r["name"],
                "up": up,
                "down": down,
                "total": total,
                "share": round(up / total, 4) if total else 0.0,
            })

        top_up = sorted((e for e in entries if e["up"] > 0), key=lambda e: (-e["up"], e["symbol"]))[:limit]
        taken = {e["symbol"] for e in top_up}
        top_down = sorted(
            (e for e in entries if e["down"] > 0 and e["symbol"] not in taken),
            key=lambda e: (-e["down"], e["symbol"]),
        )[:limit]
        return {"period": period.value, "topUp": top_up, "topDown": top_down}

    def get_user_stats(self, user_id: str) -> dict:
        stats = self._registry.get_user_prediction_stats(user_id)
        decided = stats["correct"] + stats["incorrect"]
        return {
            "totalPredictions": stats["total"],
            "activePredictions": stats["active"],
            "evaluatedPredictions": stats["evaluated"],
            "correctPredictions": stats["correct"],
            "incorrectPredictions": stats["incorrect"],
            "totalPoints": stats["points"],
            "accuracyPercentage": round(stats["correct"] / decided * 100, 2) if decided else 0.0,
        }


def _slot_counts(slots: list[Slot], counts: list[dict]) -> list[dict]:
    by_index = {r["slot_index"]: r for r in counts}
    rows = []
    for slot in slots:
        r = by_index.get(slot.index, {})
        up, down = int(r.get("up_count") or 0), int(r.get("down_count") or 0)
        rows.append({
            "slotNumber": slot.index,
            "slotLabel": slot.label,
            "upCount": up,
            "downCount": down,
            "totalCount": up + down,
        })
    return rows


def _summary(up: int, down: int) -> dict:
    total = up + down
    if up > down:
        overall = "bullish"
    elif down > up:
        overall = "bearish"
    else:
        overall = "neutral"
    return {
        "totalPredictions": total,
        "totalUp": up,
        "totalDown": down,
        "upPercentage": round(up / total * 100, 2) if total else 0.0,
        "downPercentage": round(down / total * 100, 2) if total else 0.0,
        "overallSentiment": overall,
    }
