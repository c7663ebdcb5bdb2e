"""
Live ingestion feed.

WS /ws/readings[?meter_id=N]  — one JSON message per committed ingestion;
                               with meter_id, only messages touching that meter
redis_to_ws_bridge            — background task: Redis PubSub → ReadingsFeed.broadcast
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis

from services.ingestion import UPDATES_CHANNEL

logger = logging.getLogger("meterledger.websocket")

router = APIRouter()


def message_meters(message: dict) -> set[int]:
    """Meter ids an update concerns: the submitting meter or parent plus mapped children."""
    ids = {message.get("meter_id"), message.get("parent_id")}
    ids.update(message.get("child_meter_ids") or [])
    return {i for i in ids if isinstance(i, int)}


class ReadingsFeed:
    """Connected clients and the meter each one follows (None = all)."""

    def __init__(self) -> None:
        self.clients: dict[WebSocket, int | None] = {}

    def __len__(self) -> int:
        return len(self.clients)

    async def connect(self, ws: WebSocket, meter_id: int | None = None) -> None:
        await ws.accept()
        self.clients[ws] = meter_id
        logger.info("WS client connected, meter=%s (%d total)", meter_id, len(self.clients))

    def disconnect(self, ws: WebSocket) -> None:
        self.clients.pop(ws, None)
        logger.info("WS client disconnected (%d remaining)", len(self.clients))

    async def broadcast(self, raw: str) -> int:
        """Send raw to every interested client. Returns the number reached."""
        try:
            meters = message_meters(json.loads(raw))
        except (json.JSONDecodeError, TypeError, AttributeError):
            meters = set()

        sent = 0
        dead: list[WebSocket] = []
        for ws, meter_id in list(self.clients.items()):
            if meter_id is not None and meter_id not in meters:
                continue
            try:
                await ws.send_text(raw)
                sent += 1
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.clients.pop(ws, None)
        if dead:
            logger.debug("Dropped %d dead WS connections", len(dead))
        return sent


feed = ReadingsFeed()


@router.websocket("/ws/readings")
async def ws_readings(websocket: WebSocket, meter_id: int | None = None) -> None:
    await feed.connect(websocket, meter_id)
    try:
        while True:
            if await websocket.receive_text() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        feed.disconnect(websocket)
    except Exception as exc:
        logger.debug("WS error: %s", exc)
        feed.disconnect(websocket)


async def redis_to_ws_bridge(redis: Redis) -> None:
    logger.info("Redis→WS bridge started, subscribing to %s", UPDATES_CHANNEL)
    pubsub = redis.pubsub()
    await pubsub.subscribe(UPDATES_CHANNEL)

    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            data = message["data"]
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            await feed.broadcast(data)
    except Exception as exc:
        logger.error("Redis→WS bridge error: %s", exc)
    finally:
        await pubsub.unsubscribe(UPDATES_CHANNEL)
        await pubsub.close()
