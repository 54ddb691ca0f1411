"""CLI entry point for slotrank.

Provides commands for operating the game outside the API process:
  - migrate: Run database migrations
  - seed-assets: Load the default asset catalogue
  - evaluate: Settle expired predictions once
  - rollover: Close a month into the leaderboard archive
  - refresh-prices: Pull live quotes for every active asset
  - slots: Print the slots of the current period for a duration
  - status: Show prediction and leaderboard status
  - serve: Run the API server
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import timedelta
from pathlib import Path

from slotrank.config import AppConfig, load_config
from slotrank.registry.db import Database
from slotrank.registry.queries import Registry


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _connect(config: AppConfig) -> tuple[Database, Registry]:
    db = Database(config.db_dsn)
    db.connect()
    return db, Registry(db)


def cmd_migrate(args: argparse.Namespace) -> None:
    """Run database migrations."""
    config = load_config()
    db = Database(config.db_dsn)
    db.connect()
    try:
        migrations_dir = str(Path(__file__).parent / "registry" / "migrations")
        db.run_migrations(migrations_dir)
    finally:
        db.close()
    print("Migrations complete.")


def cmd_seed_assets(args: argparse.Namespace) -> None:
    """Insert or refresh the default asset catalogue."""
    from slotrank.models.asset import DEFAULT_ASSETS

    db, registry = _connect(load_config())
    try:
        count = registry.upsert_assets(DEFAULT_ASSETS)
    finally:
        db.close()
    print(f"Seeded {count} assets.")


def cmd_evaluate(args: argparse.Namespace) -> None:
    """Settle expired predictions (or one prediction with --id)."""
    from slotrank.collaborators import RegistryBadgeService
    from slotrank.engine.evaluator import Evaluator
    from slotrank.pricing.oracle import build_oracle

    config = load_config()
    db, registry = _connect(config)
    try:
        evaluator = Evaluator(
            registry,
            build_oracle(registry, config.price_cache_ttl_seconds),
            badges=RegistryBadgeService(registry),
            claim_timeout=timedelta(seconds=config.claim_timeout_seconds),
            batch_size=config.evaluation_batch_size,
        )
        report = evaluator.evaluate_one(args.id) if args.id else evaluator.evaluate_expired()
    finally:
        db.close()
    print(json.dumps(report.to_dict(), indent=2))


def cmd_rollover(args: argparse.Namespace) -> None:
    """Archive a month and reset monthly scores."""
    from slotrank.collaborators import RegistryBadgeService
    from slotrank.engine.leaderboard import LeaderboardService

    config = load_config()
    db, registry = _connect(config)
    try:
        service = LeaderboardService(
            registry,
            badges=RegistryBadgeService(registry),
            tz=config.rollover_timezone,
            top_k=config.leaderboard_top_k,
        )
        result = service.process_monthly_rollover(args.period)
    finally:
        db.close()
    if result.skipped:
        print(f"Rollover for {result.period_key} was already processed.")
    else:
        print(f"Rollover for {result.period_key}: {result.ranked} ranked, "
              f"{result.reset_profiles} profiles reset.")


def cmd_refresh_prices(args: argparse.Namespace) -> None:
    """Fetch a live quote for every active asset."""
    from slotrank.pricing.oracle import build_oracle, refresh_prices

    config = load_config()
    db, registry = _connect(config)
    try:
        prices = refresh_prices(build_oracle(registry, config.price_cache_ttl_seconds), registry)
    finally:
        db.close()
    for symbol, price in sorted(prices.items()):
        print(f"  {symbol:10s} {price}")
    print(f"Refreshed {len(prices)} prices.")


def cmd_slots(args: argparse.Namespace) -> None:
    """Print the slots of the current period. Needs no database."""
    from slotrank.models.duration import parse_duration
    from slotrank.scoring import points_for_slot
    from slotrank.slots import current_slot, slots_for_period

    duration = parse_duration(args.duration)
    tz = args.tz or load_config().slot_timezone
    current = current_slot(duration, tz)
    print(f"{duration} slots ({tz}):")
    for slot in slots_for_period(current.start, duration, tz):
        if slot.index == current.index:
            marker = "*"
        elif slot.index > current.index:
            marker = "+"
        else:
            marker = " "
        print(f" {marker} {slot.index:2d}. {slot.label:30s} {points_for_slot(duration, slot.index):4d} pts")


def cmd_status(args: argparse.Namespace) -> None:
    """Show prediction and leaderboard status."""
    from slotrank.engine.leaderboard import LeaderboardService

    config = load_config()
    db, registry = _connect(config)
    try:
        counts = registry.get_status_counts()
        latest = registry.latest_rollover_period()
        service = LeaderboardService(registry, tz=config.rollover_timezone, top_k=5)
        top = service.current_period_ranking()
        countdown = service.countdown()
    finally:
        db.close()

    print("Predictions:")
    for status, count in counts.items():
        print(f"  {status}: {count}")
    print(f"\nLast rollover: {latest or 'never'}")
    print(f"Next rollover: {countdown['nextRolloverAt']} "
          f"({countdown['days']}d {countdown['hours']}h {countdown['minutes']}m)")
    if top:
        print(f"\nCurrent top {len(top)}:")
        for entry in top:
            print(f"  {entry.rank:2d}. {entry.username:20s} {entry.total_score:6d}")


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("slotrank.api.app:create_app", factory=True, host=args.host, port=args.port)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="slotrank",
        description="Slot-windowed up/down prediction game",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subs = parser.add_subparsers(dest="command", required=True)

    subs.add_parser("migrate", help="Run database migrations")
    subs.add_parser("seed-assets", help="Load the default asset catalogue")

    p_evaluate = subs.add_parser("evaluate", help="Settle expired predictions")
    p_evaluate.add_argument("--id", type=int, default=None, help="Evaluate a single prediction")

    p_rollover = subs.add_parser("rollover", help="Close a month into the leaderboard archive")
    p_rollover.add_argument("--period", default=None, help="Month to close, YYYY-MM (default: previous)")

    subs.add_parser("refresh-prices", help="Fetch live prices for active assets")

    p_slots = subs.add_parser("slots", help="Show slots of the current period")
    p_slots.add_argument("duration", help="Duration class, e.g. 1h, 24h, 1w")
    p_slots.add_argument("--tz", default=None, help="IANA timezone (default: SLOT_TIMEZONE)")

    subs.add_parser("status", help="Show prediction and leaderboard status")

    p_serve = subs.add_parser("serve", help="Run the API server")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    commands = {
        "migrate": cmd_migrate,
        "seed-assets": cmd_seed_assets,
        "evaluate": cmd_evaluate,
        "rollover": cmd_rollover,
        "refresh-prices": cmd_refresh_prices,
        "slots": cmd_slots,
        "status": cmd_status,
        "serve": cmd_serve,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
