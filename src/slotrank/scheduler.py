"""Background jobs: evaluation, price refresh, slot broadcasts, monthly rollover.

All jobs are asyncio tasks in the API process. Blocking database and network
work runs in a worker thread. One failed iteration is logged and the loop
carries on; tasks stop only when cancelled at shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from typing import Any

from slotrank.collaborators import PushTransport
from slotrank.engine.evaluator import Evaluator
from slotrank.engine.leaderboard import LeaderboardService, RolloverResult
from slotrank.models.duration import DurationClass
from slotrank.pricing.oracle import PriceOracle, refresh_prices
from slotrank.registry.queries import Registry
from slotrank.slots import month_bounds, previous_period_key

logger = logging.getLogger(__name__)


def next_rollover_at(now: datetime, tz: str | tzinfo | None = None) -> datetime:
    """First instant of the month after ``now`` in the rollover timezone."""
    return month_bounds(now, tz)[1]


class RolloverScheduler:
    """Fires the monthly rollover once the current month has ended.

    Completed months are recorded in the database, so a restart neither
    repeats a rollover nor loses track of one that was due while down.
    """

    def __init__(
        self,
        leaderboard: LeaderboardService,
        registry: Registry,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._leaderboard = leaderboard
        self._registry = registry
        self._clock = clock
        self._next_at: datetime | None = None

    @property
    def next_at(self) -> datetime | None:
        return self._next_at

    def startup_check(self) -> RolloverResult | None:
        """Reconcile with the persisted rollover history.

        A fresh deployment records the previous month as a baseline instead
        of archiving it. Otherwise, if the previous month was never rolled
        over, it is processed now.
        """
        now = self._clock()
        tz = self._leaderboard.timezone
        self._next_at = next_rollover_at(now, tz)
        previous = previous_period_key(now, tz)

        latest = self._registry.latest_rollover_period()
        if latest is None:
            self._leaderboard.record_baseline(previous)
            logger.info("No rollover history, recorded %s as baseline", previous)
            return None
        if latest < previous:
            logger.warning("Rollover for %s was missed (last: %s), catching up", previous, latest)
            return self._leaderboard.process_monthly_rollover(previous)
        return None

    def tick(self) -> RolloverResult | None:
        """Run the rollover if the scheduled boundary has passed."""
        now = self._clock()
        tz = self._leaderboard.timezone
        if self._next_at is None:
            self._next_at = next_rollover_at(now, tz)
        if now < self._next_at:
            return None

        result = self._leaderboard.process_monthly_rollover(previous_period_key(now, tz))
        self._next_at = next_rollover_at(now, tz)
        logger.info("Next rollover at %s", self._next_at.isoformat())
        return result


async def run_periodic(name: str, interval_seconds: float, job: Callable[[], Any],
                       initial_delay: float = 0) -> None:
    """Call ``job`` in a worker thread every ``interval_seconds`` until cancelled."""
    if initial_delay:
        await asyncio.sleep(initial_delay)
    while True:
        try:
            await asyncio.to_thread(job)
        except Exception:
            logger.exception("Background job %s failed", name)
        await asyncio.sleep(interval_seconds)


async def rollover_loop(scheduler: RolloverScheduler, interval_seconds: float) -> None:
    try:
        await asyncio.to_thread(scheduler.startup_check)
    except Exception:
        logger.exception("Rollover startup check failed")
    await run_periodic("rollover", interval_seconds, scheduler.tick, initial_delay=interval_seconds)


def broadcast_slots(push: PushTransport) -> None:
    for duration in DurationClass:
        push.broadcast_slot_update(duration)


def start_background_jobs(
    *,
    evaluator: Evaluator,
    oracle: PriceOracle,
    registry: Registry,
    push: PushTransport,
    scheduler: RolloverScheduler,
    evaluation_interval: float,
    price_refresh_interval: float,
    slot_broadcast_interval: float,
    rollover_check_interval: float,
) -> list[asyncio.Task]:
    """Create the background tasks on the running loop."""
    tasks = [
        asyncio.create_task(run_periodic("price-refresh", price_refresh_interval,
                                         lambda: refresh_prices(oracle, registry))),
        asyncio.create_task(run_periodic("evaluation", evaluation_interval,
                                         evaluator.evaluate_expired, initial_delay=5)),
        asyncio.create_task(run_periodic("slot-broadcast", slot_broadcast_interval,
                                         lambda: broadcast_slots(push))),
        asyncio.create_task(rollover_loop(scheduler, rollover_check_interval)),
    ]
    logger.info("Started %d background jobs", len(tasks))
    return tasks
