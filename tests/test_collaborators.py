from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import psycopg
import pytest

from slotrank.api.ws import ConnectionHub
from slotrank.collaborators import (
    BadgeService,
    NullBadgeService,
    NullPushTransport,
    PushTransport,
    RegistryBadgeService,
)
from slotrank.errors import CollaboratorFailure
from slotrank.models.duration import DurationClass
from slotrank.registry.queries import Registry


@pytest.fixture
def registry() -> MagicMock:
    return MagicMock(spec=Registry)


class TestNullCollaborators:
    def test_satisfy_protocols(self) -> None:
        assert isinstance(NullBadgeService(), BadgeService)
        assert isinstance(NullPushTransport(), PushTransport)
        assert isinstance(ConnectionHub("UTC"), PushTransport)

    def test_do_nothing(self) -> None:
        assert NullBadgeService().check_and_award_badges("u1") == []
        NullPushTransport().broadcast_leaderboard_update({"type": "rollover"})


class TestRegistryBadgeService:
    def test_first_correct_awarded_once(self, registry: MagicMock) -> None:
        registry.count_correct_predictions.return_value = 1
        registry.insert_badge.side_effect = [True, False]
        service = RegistryBadgeService(registry)

        first = service.check_and_award_badges("u1")
        second = service.check_and_award_badges("u1")

        assert [b.badge_type for b in first] == ["first_correct"]
        assert first[0].period_key == "lifetime"
        assert second == []

    def test_no_correct_predictions(self, registry: MagicMock) -> None:
        registry.count_correct_predictions.return_value = 0
        assert RegistryBadgeService(registry).check_and_award_badges("u1") == []
        registry.insert_badge.assert_not_called()

    def test_rank_badges_for_podium(self, registry: MagicMock) -> None:
        registry.get_monthly_leaderboard.return_value = [
            {"rank": 1, "user_id": "a", "total_score": 50},
            {"rank": 2, "user_id": "b", "total_score": 50},
            {"rank": 3, "user_id": "c", "total_score": 10},
        ]
        registry.insert_badge.return_value = True

        RegistryBadgeService(registry).award_rank_badges("2026-09")

        registry.get_monthly_leaderboard.assert_called_once_with("2026-09", limit=3)
        badges = [c[0][0] for c in registry.insert_badge.call_args_list]
        assert [(b.user_id, b.badge_type, b.rank) for b in badges] == [
            ("a", "month_1st", 1), ("b", "month_2nd", 2), ("c", "month_3rd", 3),
        ]
        assert all(b.period_key == "2026-09" for b in badges)

    def test_database_error_wrapped(self, registry: MagicMock) -> None:
        registry.count_correct_predictions.side_effect = psycopg.OperationalError("gone")
        with pytest.raises(CollaboratorFailure):
            RegistryBadgeService(registry).check_and_award_badges("u1")


class TestConnectionHub:
    def test_no_loop_drops_messages(self) -> None:
        hub = ConnectionHub("UTC")
        hub.broadcast_slot_update(DurationClass.ONE_HOUR)
        assert hub.client_count == 0

    def test_send_all_drops_dead_clients(self) -> None:
        hub = ConnectionHub("UTC")
        alive, dead = AsyncMock(), AsyncMock()
        dead.send_json.side_effect = RuntimeError("closed")
        hub._clients.update({alive, dead})

        delivered = asyncio.run(hub.send_all({"type": "ping"}))

        assert delivered == 1
        assert hub.client_count == 1
        alive.send_json.assert_awaited_once_with({"type": "ping"})

    def test_broadcast_on_bound_loop(self) -> None:
        hub = ConnectionHub("UTC")
        client = AsyncMock()

        async def scenario() -> None:
            hub.bind_loop(asyncio.get_running_loop())
            hub._clients.add(client)
            hub.broadcast_leaderboard_update({"type": "rollover", "monthYear": "2026-09"})
            hub.broadcast_sentiment_update("bitcoin", DurationClass.ONE_HOUR, [])
            for _ in range(5):
                await asyncio.sleep(0)

        asyncio.run(scenario())

        messages = [c[0][0] for c in client.send_json.await_args_list]
        assert [m["type"] for m in messages] == ["leaderboard_update", "sentiment_update"]
        assert messages[0]["data"]["monthYear"] == "2026-09"
        assert messages[1]["assetSymbol"] == "bitcoin"

    def test_slot_update_payload(self) -> None:
        hub = ConnectionHub("UTC")
        client = AsyncMock()

        async def scenario() -> None:
            hub.bind_loop(asyncio.get_running_loop())
            hub._clients.add(client)
            hub.broadcast_slot_update(DurationClass.ONE_DAY)
            for _ in range(5):
                await asyncio.sleep(0)

        asyncio.run(scenario())

        message = client.send_json.await_args[0][0]
        assert message["type"] == "slot_update"
        assert message["duration"] == "24h"
        assert 1 <= message["slot"]["slotNumber"] <= 8
