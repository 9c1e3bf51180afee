import asyncio
import json

import pytest

from chatcore.config import Config
from chatcore.utils.realtime_bus import LocalRealtimeBus, NoopBus, RedisRealtimeBus, create_bus, publish_safely
from chatcore.utils.websocket_manager import RoomManager, conversation_room, user_room
from tests.conftest import FailingBus


class FakeSocket:

    def __init__(self, broken: bool = False) -> None:
        self.sent = []
        self.accepted = False
        self.broken = broken

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, message: str) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(message))


class StubPubSub:
    """In-memory stand-in for a redis.asyncio PubSub on one channel."""

    def __init__(self) -> None:
        self.queue = asyncio.Queue()
        self.channels = set()
        self.closed = False

    async def subscribe(self, channel) -> None:
        self.channels.add(channel)

    async def unsubscribe(self, channel) -> None:
        self.channels.discard(channel)

    async def aclose(self) -> None:
        self.closed = True

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class StubRedis:

    def __init__(self) -> None:
        self.pubsub_stub = StubPubSub()
        self.published = []
        self.closed = False

    def pubsub(self):
        return self.pubsub_stub

    async def publish(self, channel, data) -> None:
        self.published.append((channel, data))
        if channel in self.pubsub_stub.channels:
            self.pubsub_stub.queue.put_nowait({"type": "message", "channel": channel, "data": data.encode("utf-8")})

    async def aclose(self) -> None:
        self.closed = True


async def _wait_for(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


class TestRoomManager:

    def test_room_names(self):
        assert user_room("u1") == "user_u1"
        assert conversation_room("c1") == "conversation_c1"

    def test_join_is_idempotent_and_empty_rooms_vanish(self):
        rooms = RoomManager()
        ws = FakeSocket()

        rooms.join("r", ws)
        rooms.join("r", ws)
        assert rooms.members("r") == [ws]

        rooms.leave("r", ws)
        assert "r" not in rooms.rooms

    def test_leave_all(self):
        rooms = RoomManager()
        ws = FakeSocket()
        rooms.join("a", ws)
        rooms.join("b", ws)

        assert rooms.leave_all(ws) == {"a", "b"}
        assert rooms.rooms == {}


class TestLocalRealtimeBus:

    async def test_connect_joins_personal_room(self):
        bus = LocalRealtimeBus()
        ws = FakeSocket()

        await bus.connect("u1", ws)
        await bus.publish("user_u1", "removed_from_group", {"conversation_id": "c1"})

        assert ws.accepted is True
        assert ws.sent == [{"event": "removed_from_group", "data": {"conversation_id": "c1"}}]

    async def test_publish_fans_out_only_to_room_members(self):
        bus = LocalRealtimeBus()
        inside, also_inside, outside = FakeSocket(), FakeSocket(), FakeSocket()
        bus.join("conversation_c1", inside)
        bus.join("conversation_c1", also_inside)
        bus.join("conversation_c2", outside)

        await bus.publish("conversation_c1", "conversation_read", {"conversation_id": "c1", "user_id": "u1"})

        assert len(inside.sent) == 1
        assert len(also_inside.sent) == 1
        assert outside.sent == []

    async def test_publish_to_empty_room_is_fine(self):
        bus = LocalRealtimeBus()
        assert await bus.deliver("user_nobody", "ping", {}) == 0

    async def test_broken_socket_is_dropped_without_failing_others(self):
        bus = LocalRealtimeBus()
        healthy, broken = FakeSocket(), FakeSocket(broken=True)
        bus.join("conversation_c1", broken)
        bus.join("user_u2", broken)
        bus.join("conversation_c1", healthy)

        delivered = await bus.deliver("conversation_c1", "message_deleted", {"message_id": "m1"})

        assert delivered == 1
        assert len(healthy.sent) == 1
        assert bus.rooms.members("user_u2") == []

    async def test_disconnect_leaves_every_room(self):
        bus = LocalRealtimeBus()
        ws = FakeSocket()
        await bus.connect("u1", ws)
        bus.join("conversation_c1", ws)

        bus.disconnect("u1", ws)

        assert bus.rooms.rooms == {}

    async def test_non_json_values_are_stringified(self):
        from datetime import datetime, timezone

        bus = LocalRealtimeBus()
        ws = FakeSocket()
        bus.join("r", ws)
        await bus.publish("r", "new_message", {"at": datetime(2024, 1, 1, tzinfo=timezone.utc)})

        assert ws.sent[0]["data"]["at"].startswith("2024-01-01")


class TestBusConstruction:

    def test_local_bus_without_redis(self, monkeypatch):
        monkeypatch.setattr(Config, "REDIS_URL", None)
        assert isinstance(create_bus(Config()), LocalRealtimeBus)
        assert not isinstance(create_bus(Config()), RedisRealtimeBus)

    def test_redis_bus_when_configured(self, monkeypatch):
        monkeypatch.setattr(Config, "REDIS_URL", "redis://localhost:6379/0")
        assert isinstance(create_bus(Config()), RedisRealtimeBus)


class TestPublishSafely:

    async def test_failures_are_swallowed(self, caplog):
        await publish_safely(FailingBus(), "user_u1", "added_to_group", {})
        assert "added_to_group" in caplog.text

    async def test_noop_bus(self):
        await publish_safely(NoopBus(), "user_u1", "added_to_group", {})


@pytest.fixture
async def redis_bus():
    bus = RedisRealtimeBus("redis://localhost:6379/0", "chat-events")
    bus._redis = StubRedis()
    await bus.start()
    yield bus
    await bus.close()


class TestRedisRealtimeBus:

    async def test_publish_writes_room_event_envelope(self, redis_bus):
        await redis_bus.publish("user_u1", "added_to_group", {"conversation_id": "c1"})

        channel, data = redis_bus._redis.published[0]
        assert channel == "chat-events"
        assert json.loads(data) == {"room": "user_u1", "event": "added_to_group", "data": {"conversation_id": "c1"}}

    async def test_published_frame_reaches_local_room_members(self, redis_bus):
        member, outsider = FakeSocket(), FakeSocket()
        redis_bus.join("conversation_c1", member)
        redis_bus.join("conversation_c2", outsider)

        await redis_bus.publish("conversation_c1", "message_updated", {"message_id": "m1"})

        await _wait_for(lambda: member.sent)
        assert member.sent == [{"event": "message_updated", "data": {"message_id": "m1"}}]
        assert outsider.sent == []

    async def test_malformed_envelope_is_logged_and_listener_survives(self, redis_bus, caplog):
        ws = FakeSocket()
        redis_bus.join("user_u1", ws)

        redis_bus._redis.pubsub_stub.queue.put_nowait({"type": "message", "data": b"not json"})
        await redis_bus.publish("user_u1", "new_message", {"text": "still here"})

        await _wait_for(lambda: ws.sent)
        assert ws.sent[0]["event"] == "new_message"
        assert "Realtime listener error" in caplog.text
        assert not redis_bus._task.done()

    async def test_close_releases_subscription(self):
        bus = RedisRealtimeBus("redis://localhost:6379/0", "chat-events")
        stub = bus._redis = StubRedis()
        await bus.start()

        await bus.close()

        assert bus._task.done()
        assert stub.pubsub_stub.closed
        assert stub.pubsub_stub.channels == set()
        assert stub.closed
