"""Stores package for Dutch game records, action logs and notifications."""

from errors import ConcurrencyError

from .game_store import GameStore, MemoryGameStore, RedisGameStore
from .action_log import ActionLog, MemoryActionLog, RedisActionLog
from .pubsub import PubSub, LocalPubSub, GamePubSub, PubSubMessage, MessageType

__all__ = [
    # Game records
    "GameStore",
    "MemoryGameStore",
    "RedisGameStore",
    "ConcurrencyError",
    # Action log
    "ActionLog",
    "MemoryActionLog",
    "RedisActionLog",
    # Pub/sub
    "PubSub",
    "LocalPubSub",
    "GamePubSub",
    "PubSubMessage",
    "MessageType",
]
