"""
Game record storage with conditional (versioned) writes.

A GameRecord (room + game state + version) is always read and written as a
whole, so a committed snapshot never mixes fields from two different writes.

Two backends share one interface:

- MemoryGameStore: single-process dict store, the default.
- RedisGameStore: JSON payload per room in Redis, for several server
  processes sharing one store.

Key patterns (Redis):
- dutch:room:{room_id}     -> JSON (full GameRecord)
- dutch:code:{code}        -> String (room_id for join-by-code)
- dutch:rooms:active       -> Set (active room IDs)

Records untouched for ROOM_TTL are expired. Redis drops the keys itself;
both backends report expired rooms so the sweeper can clean up the rest.

Every write is conditional on the version that was read. Inside one process
the per-room asyncio.Lock from lock() serializes read-modify-write; the
version check covers writers in other processes.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as redis

from errors import ConcurrencyError, NotFound
from room import GameRecord

logger = logging.getLogger(__name__)


class GameStore:
    """Interface shared by the game record backends."""

    # Abandoned rooms expire
    ROOM_TTL = timedelta(hours=24)

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, room_id: str) -> asyncio.Lock:
        """Get the lock serializing read-modify-write for a room."""
        if room_id not in self._locks:
            self._locks[room_id] = asyncio.Lock()
        return self._locks[room_id]

    def _forget_lock(self, room_id: str) -> None:
        self._locks.pop(room_id, None)

    async def create(self, record: GameRecord) -> GameRecord:
        """Store a new record at version 1 and return it."""
        raise NotImplementedError

    async def get(self, room_id: str) -> Optional[GameRecord]:
        raise NotImplementedError

    async def get_by_code(self, code: str) -> Optional[GameRecord]:
        raise NotImplementedError

    async def save(self, record: GameRecord, expected_version: int) -> GameRecord:
        """
        Write a full record if the stored version still equals expected_version.

        Returns:
            The saved record, carrying the bumped version.

        Raises:
            ConcurrencyError: Another write got in first.
            NotFound: The room was deleted in the meantime.
        """
        raise NotImplementedError

    async def delete(self, room_id: str) -> None:
        raise NotImplementedError

    async def room_ids(self) -> list[str]:
        raise NotImplementedError

    async def is_expired(self, room_id: str) -> bool:
        """Whether the room has gone untouched for longer than ROOM_TTL."""
        raise NotImplementedError

    async def expired_room_ids(self) -> list[str]:
        """IDs of rooms still tracked but idle past ROOM_TTL."""
        raise NotImplementedError

    async def ping(self) -> bool:
        """Backend health check."""
        return True

    async def close(self) -> None:
        pass


class MemoryGameStore(GameStore):
    """In-process game store. Records are kept serialized so callers never alias them."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, str] = {}
        self._codes: dict[str, str] = {}
        self._touched: dict[str, datetime] = {}

    async def create(self, record: GameRecord) -> GameRecord:
        room = record.room
        if room.id in self._records:
            raise ConcurrencyError(f"Room {room.id} already exists")
        if room.code in self._codes:
            raise ConcurrencyError(f"Room code {room.code} already in use")

        saved = GameRecord(room=room, state=record.state, version=1)
        self._records[room.id] = json.dumps(saved.to_dict())
        self._codes[room.code] = room.id
        self._touched[room.id] = datetime.now(timezone.utc)
        return GameRecord.from_dict(saved.to_dict())

    async def get(self, room_id: str) -> Optional[GameRecord]:
        raw = self._records.get(room_id)
        if raw is None:
            return None
        return GameRecord.from_dict(json.loads(raw))

    async def get_by_code(self, code: str) -> Optional[GameRecord]:
        room_id = self._codes.get(code)
        if room_id is None:
            return None
        return await self.get(room_id)

    async def save(self, record: GameRecord, expected_version: int) -> GameRecord:
        room_id = record.room.id
        raw = self._records.get(room_id)
        if raw is None:
            raise NotFound("Room not found")

        current = json.loads(raw).get("version", 0)
        if current != expected_version:
            raise ConcurrencyError(
                f"Version conflict for room {room_id}: expected {expected_version}, found {current}"
            )

        saved = GameRecord(room=record.room, state=record.state, version=current + 1)
        payload = saved.to_dict()
        self._records[room_id] = json.dumps(payload)
        self._touched[room_id] = datetime.now(timezone.utc)
        return GameRecord.from_dict(payload)

    async def delete(self, room_id: str) -> None:
        raw = self._records.pop(room_id, None)
        if raw is not None:
            code = json.loads(raw)["room"]["code"]
            self._codes.pop(code, None)
        self._touched.pop(room_id, None)
        self._forget_lock(room_id)

    async def room_ids(self) -> list[str]:
        return list(self._records)

    async def is_expired(self, room_id: str) -> bool:
        touched = self._touched.get(room_id)
        if touched is None:
            return False
        return datetime.now(timezone.utc) - touched >= self.ROOM_TTL

    async def expired_room_ids(self) -> list[str]:
        return [room_id for room_id in list(self._touched) if await self.is_expired(room_id)]


class RedisGameStore(GameStore):
    """Redis-backed game store using WATCH/MULTI for conditional writes."""

    ROOM_KEY = "dutch:room:{room_id}"
    CODE_KEY = "dutch:code:{code}"
    ACTIVE_ROOMS_KEY = "dutch:rooms:active"

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize the store with a Redis client.

        Args:
            redis_client: Async Redis client.
        """
        super().__init__()
        self.redis = redis_client

    @classmethod
    async def create_from_url(cls, redis_url: str) -> "RedisGameStore":
        """
        Create a RedisGameStore with a new Redis connection.

        Args:
            redis_url: Redis connection URL.

        Returns:
            Configured RedisGameStore instance.
        """
        client = redis.from_url(redis_url, decode_responses=False)
        # Test connection
        await client.ping()
        logger.info("RedisGameStore connected to Redis")
        return cls(client)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis.close()

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def _ttl(self) -> int:
        return int(self.ROOM_TTL.total_seconds())

    async def create(self, record: GameRecord) -> GameRecord:
        room = record.room
        saved = GameRecord(room=room, state=record.state, version=1)
        code_key = self.CODE_KEY.format(code=room.code)

        # Claim the code first so two servers cannot hand out the same one
        claimed = await self.redis.set(code_key, room.id, nx=True, ex=self._ttl())
        if not claimed:
            raise ConcurrencyError(f"Room code {room.code} already in use")

        pipe = self.redis.pipeline()
        pipe.set(self.ROOM_KEY.format(room_id=room.id), json.dumps(saved.to_dict()), ex=self._ttl())
        pipe.sadd(self.ACTIVE_ROOMS_KEY, room.id)
        await pipe.execute()
        return GameRecord.from_dict(saved.to_dict())

    async def get(self, room_id: str) -> Optional[GameRecord]:
        raw = await self.redis.get(self.ROOM_KEY.format(room_id=room_id))
        if raw is None:
            return None
        return GameRecord.from_dict(json.loads(raw))

    async def get_by_code(self, code: str) -> Optional[GameRecord]:
        room_id = await self.redis.get(self.CODE_KEY.format(code=code))
        if room_id is None:
            return None
        if isinstance(room_id, bytes):
            room_id = room_id.decode()
        return await self.get(room_id)

    async def save(self, record: GameRecord, expected_version: int) -> GameRecord:
        room_id = record.room.id
        key = self.ROOM_KEY.format(room_id=room_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise NotFound("Room not found")

                current = json.loads(raw).get("version", 0)
                if current != expected_version:
                    raise ConcurrencyError(
                        f"Version conflict for room {room_id}: "
                        f"expected {expected_version}, found {current}"
                    )

                saved = GameRecord(room=record.room, state=record.state, version=current + 1)
                payload = saved.to_dict()
                pipe.multi()
                pipe.set(key, json.dumps(payload), ex=self._ttl())
                await pipe.execute()
            except redis.WatchError:
                raise ConcurrencyError(f"Room {room_id} was modified concurrently")

        return GameRecord.from_dict(payload)

    async def delete(self, room_id: str) -> None:
        record = await self.get(room_id)
        pipe = self.redis.pipeline()
        pipe.delete(self.ROOM_KEY.format(room_id=room_id))
        pipe.srem(self.ACTIVE_ROOMS_KEY, room_id)
        if record is not None:
            pipe.delete(self.CODE_KEY.format(code=record.room.code))
        await pipe.execute()
        self._forget_lock(room_id)

    async def room_ids(self) -> list[str]:
        members = await self.redis.smembers(self.ACTIVE_ROOMS_KEY)
        return [m.decode() if isinstance(m, bytes) else m for m in members]

    async def is_expired(self, room_id: str) -> bool:
        if not await self.redis.sismember(self.ACTIVE_ROOMS_KEY, room_id):
            return False
        return not await self.redis.exists(self.ROOM_KEY.format(room_id=room_id))

    async def expired_room_ids(self) -> list[str]:
        # The record key expired on its own; the active set still lists it
        room_ids = await self.room_ids()
        if not room_ids:
            return []
        pipe = self.redis.pipeline()
        for room_id in room_ids:
            pipe.exists(self.ROOM_KEY.format(room_id=room_id))
        found = await pipe.execute()
        return [room_id for room_id, exists in zip(room_ids, found) if not exists]
