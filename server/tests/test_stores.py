"""
Tests for game record storage, action logs and pub/sub.

These tests cover:
- MemoryGameStore / RedisGameStore: versioned conditional writes
- Expiry of rooms left untouched past the TTL
- MemoryActionLog / RedisActionLog: sequencing, ordering, retention
- LocalPubSub / GamePubSub: per-room fan-out

Redis backends run against fakeredis for isolated testing.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from errors import ConcurrencyError, NotFound
from game import full_deck, deal_initial_hands
from models.actions import ActionType, GameAction
from room import GameRecord, Room, RoomPlayer
from stores.action_log import MemoryActionLog, RedisActionLog
from stores.game_store import MemoryGameStore, RedisGameStore
from stores.pubsub import GamePubSub, LocalPubSub, MessageType, PubSubMessage


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_redis():
    """Create a fakeredis async client for testing."""
    return fakeredis.FakeAsyncRedis()


@pytest.fixture(params=["memory", "redis"])
def game_store(request, fake_redis):
    if request.param == "memory":
        return MemoryGameStore()
    return RedisGameStore(fake_redis)


@pytest.fixture(params=["memory", "redis"])
def action_log(request, fake_redis):
    if request.param == "memory":
        return MemoryActionLog(retention=5)
    return RedisActionLog(fake_redis, retention=5)


def make_record(room_id="room-1", code="ABC123") -> GameRecord:
    room = Room(
        id=room_id,
        code=code,
        host_id="p1",
        players=[
            RoomPlayer(player_id="p1", name="Alice", position=0),
            RoomPlayer(player_id="p2", name="Bob", position=1),
        ],
    )
    return GameRecord(room=room, state=deal_initial_hands(full_deck(), ["p1", "p2"]))


# =============================================================================
# Game Store Tests
# =============================================================================

class TestGameStore:

    @pytest.mark.asyncio
    async def test_create_starts_at_version_1(self, game_store):
        created = await game_store.create(make_record())
        assert created.version == 1

        loaded = await game_store.get("room-1")
        assert loaded.version == 1
        assert loaded.state.deck == created.state.deck

    @pytest.mark.asyncio
    async def test_get_by_code(self, game_store):
        await game_store.create(make_record())
        loaded = await game_store.get_by_code("ABC123")
        assert loaded.room.id == "room-1"
        assert await game_store.get_by_code("FFFFFF") is None

    @pytest.mark.asyncio
    async def test_save_bumps_version(self, game_store):
        record = await game_store.create(make_record())
        record.room.name = "Renamed"

        saved = await game_store.save(record, expected_version=1)

        assert saved.version == 2
        loaded = await game_store.get("room-1")
        assert loaded.version == 2
        assert loaded.room.name == "Renamed"

    @pytest.mark.asyncio
    async def test_stale_save_rejected_and_store_unchanged(self, game_store):
        record = await game_store.create(make_record())
        first = record.copy()
        second = record.copy()

        first.state.deck.pop()
        await game_store.save(first, expected_version=1)

        second.state.discard_pile.clear()
        with pytest.raises(ConcurrencyError):
            await game_store.save(second, expected_version=1)

        loaded = await game_store.get("room-1")
        assert loaded.version == 2
        assert len(loaded.state.deck) == 42
        assert len(loaded.state.discard_pile) == 1

    @pytest.mark.asyncio
    async def test_save_to_deleted_room(self, game_store):
        record = await game_store.create(make_record())
        await game_store.delete("room-1")
        with pytest.raises(NotFound):
            await game_store.save(record, expected_version=1)

    @pytest.mark.asyncio
    async def test_delete_removes_code_index(self, game_store):
        await game_store.create(make_record())
        await game_store.delete("room-1")
        assert await game_store.get("room-1") is None
        assert await game_store.get_by_code("ABC123") is None
        assert await game_store.room_ids() == []

    @pytest.mark.asyncio
    async def test_duplicate_code_rejected(self, game_store):
        await game_store.create(make_record())
        with pytest.raises(ConcurrencyError):
            await game_store.create(make_record(room_id="room-2"))

    @pytest.mark.asyncio
    async def test_returned_records_do_not_alias_store(self, game_store):
        await game_store.create(make_record())
        loaded = await game_store.get("room-1")
        loaded.state.deck.clear()
        again = await game_store.get("room-1")
        assert len(again.state.deck) == 43

    @pytest.mark.asyncio
    async def test_lock_is_per_room(self, game_store):
        assert game_store.lock("room-1") is game_store.lock("room-1")
        assert game_store.lock("room-1") is not game_store.lock("room-2")

    @pytest.mark.asyncio
    async def test_ping(self, game_store):
        assert await game_store.ping() is True

    @pytest.mark.asyncio
    async def test_fresh_room_not_expired(self, game_store):
        await game_store.create(make_record())
        assert await game_store.expired_room_ids() == []
        assert await game_store.is_expired("room-1") is False


class TestRoomExpiry:

    @pytest.mark.asyncio
    async def test_memory_room_past_ttl_is_reported(self):
        store = MemoryGameStore()
        await store.create(make_record())
        store.ROOM_TTL = timedelta(0)

        assert await store.expired_room_ids() == ["room-1"]

        await store.delete("room-1")
        assert await store.expired_room_ids() == []

    @pytest.mark.asyncio
    async def test_memory_save_refreshes_ttl(self):
        store = MemoryGameStore()
        created = await store.create(make_record())
        store.ROOM_TTL = timedelta(minutes=5)
        store._touched["room-1"] = datetime.now(timezone.utc) - timedelta(minutes=10)
        assert await store.is_expired("room-1") is True

        await store.save(created, expected_version=1)

        assert await store.is_expired("room-1") is False

    @pytest.mark.asyncio
    async def test_redis_expired_key_is_reported(self, fake_redis):
        store = RedisGameStore(fake_redis)
        await store.create(make_record())
        await store.create(make_record("room-2", "DEF456"))
        await fake_redis.delete("dutch:room:room-1")

        assert await store.expired_room_ids() == ["room-1"]
        assert await store.is_expired("room-1") is True

        await store.delete("room-1")
        assert await store.room_ids() == ["room-2"]


# =============================================================================
# Action Log Tests
# =============================================================================

class TestActionLog:

    @pytest.mark.asyncio
    async def test_sequence_numbers_increase(self, action_log):
        first = await action_log.append("room-1", GameAction(ActionType.DRAW, "p1", {"source": "deck"}))
        second = await action_log.append("room-1", GameAction(ActionType.DISCARD, "p1"))
        assert (first.sequence_num, second.sequence_num) == (1, 2)

    @pytest.mark.asyncio
    async def test_recent_is_oldest_first(self, action_log):
        for action_type in (ActionType.GAME_STARTED, ActionType.DRAW, ActionType.SWAP):
            await action_log.append("room-1", GameAction(action_type, "p1"))

        recent = await action_log.recent("room-1", limit=2)

        assert [a.action_type for a in recent] == [ActionType.DRAW, ActionType.SWAP]
        assert [a.sequence_num for a in recent] == [2, 3]

    @pytest.mark.asyncio
    async def test_retention_cap(self, action_log):
        for _ in range(8):
            await action_log.append("room-1", GameAction(ActionType.DRAW, "p1"))

        recent = await action_log.recent("room-1", limit=50)

        assert len(recent) == 5
        assert recent[-1].sequence_num == 8

    @pytest.mark.asyncio
    async def test_rooms_are_independent(self, action_log):
        await action_log.append("room-1", GameAction(ActionType.DRAW, "p1"))
        other = await action_log.append("room-2", GameAction(ActionType.DRAW, "p9"))
        assert other.sequence_num == 1
        assert len(await action_log.recent("room-1")) == 1

    @pytest.mark.asyncio
    async def test_clear(self, action_log):
        await action_log.append("room-1", GameAction(ActionType.DRAW, "p1"))
        await action_log.clear("room-1")
        assert await action_log.recent("room-1") == []


# =============================================================================
# Pub/Sub Tests
# =============================================================================

class TestPubSubMessage:

    def test_json_round_trip(self):
        msg = PubSubMessage(
            type=MessageType.STATE_CHANGED,
            room_id="room-1",
            data={"version": 4},
            sender_id="server-a",
        )
        restored = PubSubMessage.from_json(msg.to_json())
        assert restored == msg


class TestLocalPubSub:

    @pytest.mark.asyncio
    async def test_publish_reaches_room_handlers_only(self):
        pubsub = LocalPubSub()
        got_1, got_2 = [], []

        async def handler_1(msg):
            got_1.append(msg)

        async def handler_2(msg):
            got_2.append(msg)

        await pubsub.subscribe("room-1", handler_1)
        await pubsub.subscribe("room-2", handler_2)

        count = await pubsub.publish(PubSubMessage(MessageType.STATE_CHANGED, "room-1", {"version": 2}))

        assert count == 1
        assert len(got_1) == 1
        assert got_2 == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        pubsub = LocalPubSub()
        received = []

        async def broken(msg):
            raise RuntimeError("socket closed")

        async def working(msg):
            received.append(msg)

        await pubsub.subscribe("room-1", broken)
        await pubsub.subscribe("room-1", working)
        await pubsub.publish(PubSubMessage(MessageType.ROOM_CLOSED, "room-1", {}))

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_remove_last_handler_unsubscribes(self):
        pubsub = LocalPubSub()

        async def handler(msg):
            pass

        await pubsub.subscribe("room-1", handler)
        await pubsub.remove_handler("room-1", handler)
        assert pubsub.handler_count("room-1") == 0


class TestGamePubSub:

    @pytest.mark.asyncio
    async def test_local_handlers_get_own_messages_once(self, fake_redis):
        pubsub = GamePubSub(fake_redis, server_id="server-a")
        await pubsub.start()
        received = []

        async def handler(msg):
            received.append(msg)

        try:
            await pubsub.subscribe("room-1", handler)
            await pubsub.publish(PubSubMessage(MessageType.STATE_CHANGED, "room-1", {"version": 3}))
            # Give the listener a chance to (not) redeliver our own message
            await asyncio.sleep(0.2)
        finally:
            await pubsub.stop()

        assert len(received) == 1
        assert received[0].sender_id == "server-a"

    @pytest.mark.asyncio
    async def test_messages_from_other_servers_are_dispatched(self, fake_redis):
        pubsub = GamePubSub(fake_redis, server_id="server-a")
        received = []

        async def handler(msg):
            received.append(msg)

        await pubsub.subscribe("room-1", handler)
        raw = PubSubMessage(MessageType.ACTION_APPENDED, "room-1", {"action": {}}, sender_id="server-b")
        await pubsub._handle_message({
            "channel": pubsub._channel("room-1").encode(),
            "data": raw.to_json().encode(),
        })

        assert [m.sender_id for m in received] == ["server-b"]
