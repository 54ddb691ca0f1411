"""WebSocket fan-out for slot, sentiment and leaderboard updates."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, tzinfo

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from slotrank.api.deps import app_state
from slotrank.models.duration import DurationClass
from slotrank.slots import DEFAULT_TIMEZONE, current_slot, resolve_zone

logger = logging.getLogger(__name__)

router = APIRouter()

IDLE_TIMEOUT = 60  # seconds between keep-alive pings


class ConnectionHub:
    """Push transport that broadcasts JSON messages to every open socket.

    The broadcast methods are synchronous so engine code running in worker
    threads can call them; delivery is scheduled on the event loop bound at
    startup. Without a bound loop, messages are dropped.
    """

    def __init__(self, tz: str | tzinfo = DEFAULT_TIMEZONE) -> None:
        self._clients: set[WebSocket] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tz = resolve_zone(tz)

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.debug("WebSocket connected (%d clients)", len(self._clients))

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.debug("WebSocket disconnected (%d clients)", len(self._clients))

    async def send_all(self, message: dict) -> int:
        """Send to every client, dropping the ones that fail. Returns deliveries."""
        delivered = 0
        for websocket in list(self._clients):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception:
                logger.debug("Dropping dead WebSocket", exc_info=True)
                self.disconnect(websocket)
        return delivered

    def _dispatch(self, message: dict) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or not self._clients:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.create_task(self.send_all(message))
        else:
            asyncio.run_coroutine_threadsafe(self.send_all(message), loop)

    def broadcast_slot_update(self, duration: DurationClass) -> None:
        slot = current_slot(duration, self._tz)
        self._dispatch({
            "type": "slot_update",
            "duration": duration.value,
            "slot": slot.to_dict(),
            "timestamp": datetime.now(UTC).isoformat(),
        })

    def broadcast_sentiment_update(self, symbol: str, duration: DurationClass, payload: list[dict]) -> None:
        self._dispatch({
            "type": "sentiment_update",
            "assetSymbol": symbol,
            "duration": duration.value,
            "data": payload,
            "timestamp": datetime.now(UTC).isoformat(),
        })

    def broadcast_leaderboard_update(self, payload: dict) -> None:
        self._dispatch({
            "type": "leaderboard_update",
            "data": payload,
            "timestamp": datetime.now(UTC).isoformat(),
        })


@router.websocket("/ws")
async def ws_updates(websocket: WebSocket):
    """Subscribe to live updates. Clients may send ``ping`` to get ``pong``."""
    hub = app_state.hub
    if hub is None:
        await websocket.close(code=1011, reason="Updates not available")
        return

    await hub.connect(websocket)
    try:
        await websocket.send_json({"type": "connected", "timestamp": datetime.now(UTC).isoformat()})
        while True:
            try:
                text = await asyncio.wait_for(websocket.receive_text(), timeout=IDLE_TIMEOUT)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "ping"})
                continue
            if text.strip().lower() == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WebSocket error")
    finally:
        hub.disconnect(websocket)
