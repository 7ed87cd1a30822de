"""
Room management for multiplayer Dutch games.

This module handles room records, seating, and the lobby operations that
happen before and after a game (create, join, ready, leave, delete).

A Room contains:
    - A unique 6-character code for joining
    - The seated players, ordered by position (this is the turn order)
    - Turn bookkeeping while a game runs (current turn, Dutch caller)

A GameRecord pairs a Room with its GameState and a version counter; it is
the unit the game store reads and writes atomically.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, TYPE_CHECKING

from config import config
from constants import MIN_PLAYERS, MAX_PLAYERS
from errors import InvalidState, NotFound, Unauthorized, ValidationError
from game import GameState

if TYPE_CHECKING:
    from stores.action_log import ActionLog
    from stores.game_store import GameStore
    from stores.pubsub import PubSub

logger = logging.getLogger(__name__)


class RoomStatus(str, Enum):
    """Lifecycle of a room."""

    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str_to_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class RoomPlayer:
    """
    A seated player.

    Attributes:
        player_id: Verified identity of the player.
        name: Display name.
        position: Seat number; ascending position is turn order.
        is_ready: Whether the player is ready for the host to start.
    """

    player_id: str
    name: str
    position: int
    is_ready: bool = False

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "position": self.position,
            "is_ready": self.is_ready,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "RoomPlayer":
        return cls(
            player_id=d["player_id"],
            name=d.get("name", "Player"),
            position=d["position"],
            is_ready=d.get("is_ready", False),
        )


@dataclass
class Room:
    """
    A game room.

    Attributes:
        id: Unique room identifier.
        code: Short join code (e.g., "3FA9C1").
        host_id: Player who controls the room.
        name: Display name of the room.
        max_players: Seat limit (2-6).
        status: waiting, playing or finished.
        current_turn: Player whose turn it is (None outside a game).
        turn_started_at: When the current turn began (UTC).
        dutch_caller: Player who called Dutch (set once per game).
        idle_turns: Consecutive turns that timed out with no player action.
        players: Seated players.
        created_at: Creation time (UTC).
    """

    id: str
    code: str
    host_id: str
    name: str = ""
    max_players: int = 4
    status: RoomStatus = RoomStatus.WAITING
    current_turn: Optional[str] = None
    turn_started_at: Optional[datetime] = None
    dutch_caller: Optional[str] = None
    idle_turns: int = 0
    players: list[RoomPlayer] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def player_ids(self) -> list[str]:
        """Player IDs in turn order (ascending position)."""
        return [p.player_id for p in sorted(self.players, key=lambda p: p.position)]

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        """Get a seated player by ID, or None if not found."""
        for player in self.players:
            if player.player_id == player_id:
                return player
        return None

    def is_member(self, player_id: Optional[str]) -> bool:
        return player_id is not None and self.get_player(player_id) is not None

    def is_full(self) -> bool:
        return len(self.players) >= self.max_players

    def next_position(self) -> int:
        """Lowest free seat number."""
        taken = {p.position for p in self.players}
        position = 0
        while position in taken:
            position += 1
        return position

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "host_id": self.host_id,
            "name": self.name,
            "max_players": self.max_players,
            "status": self.status.value,
            "current_turn": self.current_turn,
            "turn_started_at": _dt_to_str(self.turn_started_at),
            "dutch_caller": self.dutch_caller,
            "idle_turns": self.idle_turns,
            "players": [p.to_dict() for p in self.players],
            "created_at": _dt_to_str(self.created_at),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Room":
        return cls(
            id=d["id"],
            code=d["code"],
            host_id=d["host_id"],
            name=d.get("name", ""),
            max_players=d.get("max_players", 4),
            status=RoomStatus(d.get("status", RoomStatus.WAITING.value)),
            current_turn=d.get("current_turn"),
            turn_started_at=_str_to_dt(d.get("turn_started_at")),
            dutch_caller=d.get("dutch_caller"),
            idle_turns=d.get("idle_turns", 0),
            players=[RoomPlayer.from_dict(p) for p in d.get("players", [])],
            created_at=_str_to_dt(d.get("created_at")) or datetime.now(timezone.utc),
        )

    def player_list(self) -> list[dict]:
        """Seated players for client display, in turn order."""
        return [
            {**p.to_dict(), "is_host": p.player_id == self.host_id}
            for p in sorted(self.players, key=lambda p: p.position)
        ]


@dataclass
class GameRecord:
    """
    Everything stored for one room: the room, its game state and a version.

    The version is bumped by the store on every successful write and is the
    compare-and-swap predicate for conditional saves.
    """

    room: Room
    state: Optional[GameState] = None
    version: int = 0

    def to_dict(self) -> dict:
        return {
            "room": self.room.to_dict(),
            "state": self.state.to_dict() if self.state else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "GameRecord":
        state = d.get("state")
        return cls(
            room=Room.from_dict(d["room"]),
            state=GameState.from_dict(state) if state else None,
            version=d.get("version", 0),
        )

    def copy(self) -> "GameRecord":
        """Independent working copy (deep)."""
        return GameRecord.from_dict(self.to_dict())


class RoomManager:
    """
    Lobby operations over the game store.

    Every mutation runs under the room's lock and is saved conditionally on
    the version that was read, like game actions.
    """

    def __init__(
        self,
        store: "GameStore",
        action_log: Optional["ActionLog"] = None,
        pubsub: Optional["PubSub"] = None,
    ) -> None:
        self.store = store
        self.action_log = action_log
        self.pubsub = pubsub

    async def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique uppercase hex room code."""
        length = config.ROOM_CODE_LENGTH
        for _ in range(max_attempts):
            code = secrets.token_hex((length + 1) // 2).upper()[:length]
            if await self.store.get_by_code(code) is None:
                return code
        raise RuntimeError("Could not generate unique room code")

    async def _notify(self, record: GameRecord) -> None:
        if self.pubsub is None:
            return
        # Import here to avoid circular dependency (stores imports room)
        from stores.pubsub import MessageType, PubSubMessage

        await self.pubsub.publish(PubSubMessage(
            type=MessageType.STATE_CHANGED,
            room_id=record.room.id,
            data={"version": record.version},
        ))

    async def create_room(
        self,
        host_id: str,
        host_name: str,
        name: str = "",
        max_players: Optional[int] = None,
    ) -> Room:
        """
        Create a new room with the caller seated as host.

        Args:
            host_id: Verified identity of the host.
            host_name: Host display name.
            name: Room display name.
            max_players: Seat limit (2-6), defaults to DEFAULT_MAX_PLAYERS.

        Returns:
            The newly created Room.
        """
        if max_players is None:
            max_players = config.DEFAULT_MAX_PLAYERS
        upper = min(MAX_PLAYERS, config.MAX_PLAYERS_PER_ROOM)
        if not MIN_PLAYERS <= max_players <= upper:
            raise ValidationError(f"max_players must be between {MIN_PLAYERS} and {upper}")

        room = Room(
            id=str(uuid.uuid4()),
            code=await self._generate_code(),
            host_id=host_id,
            name=name or f"{host_name}'s room",
            max_players=max_players,
            players=[RoomPlayer(player_id=host_id, name=host_name, position=0, is_ready=True)],
        )
        record = await self.store.create(GameRecord(room=room))
        logger.info(f"Room {room.code} created by {host_id}")
        await self._notify(record)
        return record.room

    async def join_room(self, code: str, player_id: str, name: str) -> Room:
        """
        Seat a player in a waiting room.

        Joining a room the player already sits in is a no-op.
        """
        found = await self.store.get_by_code(code.upper())
        if found is None:
            raise NotFound("Room not found")

        async with self.store.lock(found.room.id):
            record = await self.store.get(found.room.id)
            if record is None:
                raise NotFound("Room not found")
            room = record.room
            if room.is_member(player_id):
                return room
            if room.status != RoomStatus.WAITING:
                raise InvalidState("Game already in progress")
            if room.is_full():
                raise InvalidState("Room is full", {"max_players": room.max_players})

            working = record.copy()
            working.room.players.append(
                RoomPlayer(player_id=player_id, name=name, position=working.room.next_position())
            )
            saved = await self.store.save(working, expected_version=record.version)

        logger.info(f"Player {player_id} joined room {room.code}")
        await self._notify(saved)
        return saved.room

    async def set_ready(self, room_id: str, player_id: str, ready: bool) -> Room:
        """Mark a seated player ready (or not) while the room is waiting."""
        async with self.store.lock(room_id):
            record = await self.store.get(room_id)
            if record is None:
                raise NotFound("Room not found")
            if not record.room.is_member(player_id):
                raise Unauthorized("You are not a member of this room")
            if record.room.status != RoomStatus.WAITING:
                raise InvalidState("Game already in progress")

            working = record.copy()
            working.room.get_player(player_id).is_ready = ready
            saved = await self.store.save(working, expected_version=record.version)

        await self._notify(saved)
        return saved.room

    async def leave_room(self, room_id: str, player_id: str) -> Optional[Room]:
        """
        Remove a player from a room.

        Seating is frozen while a game is being played. If the host leaves,
        the next seated player becomes host; the last player out deletes the
        room.

        Returns:
            The updated Room, or None if the room was deleted.
        """
        async with self.store.lock(room_id):
            record = await self.store.get(room_id)
            if record is None:
                raise NotFound("Room not found")
            if not record.room.is_member(player_id):
                raise Unauthorized("You are not a member of this room")
            if record.room.status == RoomStatus.PLAYING:
                raise InvalidState("Cannot leave while a game is in progress")

            working = record.copy()
            room = working.room
            room.players = [p for p in room.players if p.player_id != player_id]

            if not room.players:
                await self._delete_locked(room_id)
                logger.info(f"Room {room.code} closed (last player left)")
                return None

            if room.host_id == player_id:
                room.host_id = room.player_ids[0]
            saved = await self.store.save(working, expected_version=record.version)

        logger.info(f"Player {player_id} left room {saved.room.code}")
        await self._notify(saved)
        return saved.room

    async def delete_room(self, room_id: str, caller_id: str) -> None:
        """Delete a room and its game state (host only)."""
        async with self.store.lock(room_id):
            record = await self.store.get(room_id)
            if record is None:
                raise NotFound("Room not found")
            if record.room.host_id != caller_id:
                raise Unauthorized("Only the host can delete the room")
            await self._delete_locked(room_id)
        logger.info(f"Room {record.room.code} deleted by host {caller_id}")

    async def expire_room(self, room_id: str) -> bool:
        """
        Delete a room that has gone untouched past the store's TTL.

        Returns:
            True if the room was deleted, False if it was touched again.
        """
        async with self.store.lock(room_id):
            if not await self.store.is_expired(room_id):
                return False
            await self._delete_locked(room_id)
        logger.info(f"Room {room_id} expired")
        return True

    async def _delete_locked(self, room_id: str) -> None:
        await self.store.delete(room_id)
        if self.action_log is not None:
            try:
                await self.action_log.clear(room_id)
            except Exception as e:
                logger.error(f"Failed to clear action log for room {room_id}: {e}")
        if self.pubsub is not None:
            from stores.pubsub import MessageType, PubSubMessage

            await self.pubsub.publish(PubSubMessage(
                type=MessageType.ROOM_CLOSED,
                room_id=room_id,
                data={},
            ))
