"""
Realtime fan-out over rooms.

``publish`` is best-effort and at-most-once: no acknowledgement, no
persistence, no retry. Frames reach sockets as
``{"event": <name>, "data": <payload>}``.

The bus is built once by ``create_bus`` at startup, kept on
``app.state.bus`` and handed to services explicitly.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from fastapi import WebSocket
from fastapi.requests import HTTPConnection

from chatcore.config import Config
from chatcore.utils.websocket_manager import RoomManager, user_room


logger = logging.getLogger(__name__)


def encode_frame(event: str, payload: Dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": payload}, default=str)


class NoopBus:

    enabled = False

    async def start(self) -> None:
        return

    async def close(self) -> None:
        return

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        return

    def join(self, room: str, websocket: WebSocket) -> None:
        return

    def leave(self, room: str, websocket: WebSocket) -> None:
        return

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        return


class LocalRealtimeBus:
    """Delivers to sockets connected to this process."""

    enabled = True

    def __init__(self) -> None:
        self.rooms = RoomManager()

    async def start(self) -> None:
        return

    async def close(self) -> None:
        return

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.rooms.join(user_room(user_id), websocket)
        logger.info("User %s connected", user_id)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        self.rooms.leave_all(websocket)
        logger.info("User %s disconnected", user_id)

    def join(self, room: str, websocket: WebSocket) -> None:
        self.rooms.join(room, websocket)

    def leave(self, room: str, websocket: WebSocket) -> None:
        self.rooms.leave(room, websocket)

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        await self.deliver(room, event, payload)

    async def deliver(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        return await self.rooms.send_to_room(room, encode_frame(event, payload))


class RedisRealtimeBus(LocalRealtimeBus):
    """Shares publishes across processes through one Redis pub/sub channel."""

    def __init__(self, url: str, channel: str) -> None:
        super().__init__()
        self._redis = redis.from_url(url)
        self._channel = channel
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._task = asyncio.create_task(self._listen())
        logger.info("Realtime bus subscribed to redis channel %s", self._channel)

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        await self._redis.aclose()

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        envelope = json.dumps({"room": room, "event": event, "data": payload}, default=str)
        await self._redis.publish(self._channel, envelope)

    async def _listen(self) -> None:
        while True:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if not msg or msg.get("type") != "message":
                    continue
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                envelope = json.loads(data)
                await self.deliver(envelope["room"], envelope["event"], envelope["data"])
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Realtime listener error: %s", exc)
                await asyncio.sleep(0.5)


def create_bus(config: Config):
    if config.REDIS_URL:
        return RedisRealtimeBus(config.REDIS_URL, config.REDIS_CHANNEL)
    return LocalRealtimeBus()


def get_bus(connection: HTTPConnection):
    return connection.app.state.bus


async def publish_safely(bus, room: str, event: str, payload: Dict[str, Any]) -> None:
    try:
        await bus.publish(room, event, payload)
    except Exception as exc:
        # the write already succeeded; clients re-fetch on reconnect
        logger.warning("Realtime publish of %s to %s failed: %s", event, room, exc)
