"""
Append-only per-room action log.

Each room has its own sequence of public GameAction entries. Appending
assigns the next sequence number; reading returns the most recent entries
oldest-first. Retention is capped so a long game cannot grow without bound.

The log is informational: a failed append never affects game state (the
game service logs the failure and carries on).

Key patterns (Redis):
- dutch:actions:{room_id}       -> List (JSON action entries)
- dutch:actions:{room_id}:seq   -> Integer (last sequence number)
"""

import logging
from collections import deque
from datetime import timedelta
from typing import Optional

import redis.asyncio as redis

from config import config
from models.actions import GameAction

logger = logging.getLogger(__name__)


class ActionLog:
    """Interface shared by the action log backends."""

    def __init__(self, retention: Optional[int] = None):
        self.retention = retention or config.ACTION_LOG_RETENTION

    async def append(self, room_id: str, action: GameAction) -> GameAction:
        """Append an action, assigning its sequence number. Returns the action."""
        raise NotImplementedError

    async def recent(self, room_id: str, limit: Optional[int] = None) -> list[GameAction]:
        """Get the most recent actions for a room, oldest first."""
        raise NotImplementedError

    async def clear(self, room_id: str) -> None:
        raise NotImplementedError


class MemoryActionLog(ActionLog):
    """In-process action log."""

    def __init__(self, retention: Optional[int] = None):
        super().__init__(retention)
        self._entries: dict[str, deque[GameAction]] = {}
        self._sequence: dict[str, int] = {}

    async def append(self, room_id: str, action: GameAction) -> GameAction:
        seq = self._sequence.get(room_id, 0) + 1
        self._sequence[room_id] = seq
        action.sequence_num = seq
        if room_id not in self._entries:
            self._entries[room_id] = deque(maxlen=self.retention)
        self._entries[room_id].append(action)
        return action

    async def recent(self, room_id: str, limit: Optional[int] = None) -> list[GameAction]:
        limit = limit or config.ACTION_LOG_LIMIT
        entries = list(self._entries.get(room_id, ()))
        return entries[-limit:]

    async def clear(self, room_id: str) -> None:
        self._entries.pop(room_id, None)
        self._sequence.pop(room_id, None)


class RedisActionLog(ActionLog):
    """Redis-backed action log (RPUSH/LTRIM/LRANGE)."""

    LOG_KEY = "dutch:actions:{room_id}"
    SEQ_KEY = "dutch:actions:{room_id}:seq"

    LOG_TTL = timedelta(hours=24)

    def __init__(self, redis_client: redis.Redis, retention: Optional[int] = None):
        super().__init__(retention)
        self.redis = redis_client

    async def append(self, room_id: str, action: GameAction) -> GameAction:
        log_key = self.LOG_KEY.format(room_id=room_id)
        seq_key = self.SEQ_KEY.format(room_id=room_id)
        ttl = int(self.LOG_TTL.total_seconds())

        action.sequence_num = int(await self.redis.incr(seq_key))

        pipe = self.redis.pipeline()
        pipe.rpush(log_key, action.to_json())
        pipe.ltrim(log_key, -self.retention, -1)
        pipe.expire(log_key, ttl)
        pipe.expire(seq_key, ttl)
        await pipe.execute()
        return action

    async def recent(self, room_id: str, limit: Optional[int] = None) -> list[GameAction]:
        limit = limit or config.ACTION_LOG_LIMIT
        raw = await self.redis.lrange(self.LOG_KEY.format(room_id=room_id), -limit, -1)
        return [GameAction.from_json(item) for item in raw]

    async def clear(self, room_id: str) -> None:
        await self.redis.delete(
            self.LOG_KEY.format(room_id=room_id),
            self.SEQ_KEY.format(room_id=room_id),
        )
