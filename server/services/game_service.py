"""
Game service: the single writer of game records.

Every state-changing game operation goes through the same pipeline:

    1. take the room's lock and load the record
    2. apply the transition to a working copy (guard + engine)
    3. save conditionally on the loaded version
    4. append the public action entries to the log
    5. reschedule the room's server-side timer
    6. release the lock, then publish "action appended" and "state changed"

A failed save (another writer got in first) reloads and re-evaluates, up to
MAX_ATTEMPTS times. Domain errors come back as structured results; nothing
is committed when a transition fails.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, TYPE_CHECKING, Union

from pydantic import ValidationError as RequestValidationError

import engine
from errors import (
    ConcurrencyError,
    GameError,
    INTERNAL_ERROR,
    INTERNAL_ERROR_MESSAGE,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationError,
)
from game import GamePhase
from logging_config import log_context
from models.actions import ActionRequest, GameAction
from room import GameRecord, RoomManager
from stores.action_log import ActionLog
from stores.game_store import GameStore
from stores.pubsub import MessageType, PubSub, PubSubMessage
from turn_guard import require_member
from view import project_for

if TYPE_CHECKING:
    from services.turn_timer import TurnTimer

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

# A transition mutates a working copy and returns its actions, or None for "nothing to do"
Transition = Callable[[GameRecord], Optional[list[GameAction]]]


@dataclass
class ActionResult:
    """Outcome of a state-changing operation."""

    success: bool
    drawn_card: Optional[dict] = None
    error: Optional[str] = None
    code: Optional[str] = None
    details: Optional[dict] = None
    version: Optional[int] = None

    @classmethod
    def failure(cls, err: GameError) -> "ActionResult":
        return cls(success=False, error=err.message, code=err.code, details=err.details or None)

    @classmethod
    def internal_error(cls) -> "ActionResult":
        return cls(success=False, error=INTERNAL_ERROR_MESSAGE, code=INTERNAL_ERROR)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["version"] = self.version
            if self.drawn_card is not None:
                data["drawn_card"] = self.drawn_card
        else:
            data["error"] = self.error
            data["code"] = self.code
            if self.details:
                data["details"] = self.details
        return data


@dataclass
class StateResult:
    """Outcome of a state read: the caller's redacted view, or an error."""

    success: bool
    state: Optional[dict] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def failure(cls, err: GameError) -> "StateResult":
        return cls(success=False, error=err.message, code=err.code)

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "state": self.state}
        return {"success": False, "error": self.error, "code": self.code}


def _request_errors(e: RequestValidationError) -> list[dict]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]


class GameService:
    """
    Orchestrates game actions over the store, action log and pub/sub.

    Attributes:
        store: Game record store.
        action_log: Per-room action log.
        pubsub: Room change notification.
        rooms: Lobby operations (create/join/ready/leave/delete).
        timer: Server-side turn timer (optional; set by the app).
    """

    def __init__(
        self,
        store: GameStore,
        action_log: ActionLog,
        pubsub: PubSub,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.action_log = action_log
        self.pubsub = pubsub
        self.rng = rng
        self.rooms = RoomManager(store, action_log, pubsub)
        self.timer: Optional["TurnTimer"] = None
        self._in_flight: set[tuple[str, str]] = set()

    # -------------------------------------------------------------------------
    # Commit pipeline
    # -------------------------------------------------------------------------

    async def _commit(
        self,
        room_id: str,
        transition: Transition,
    ) -> tuple[Optional[GameRecord], list[GameAction]]:
        """
        Run transition under the room lock and save it conditionally.

        Returns:
            (saved record, actions), or (None, []) if the transition had
            nothing to do.

        Raises:
            GameError: The transition was rejected (nothing saved).
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            async with self.store.lock(room_id):
                record = await self.store.get(room_id)
                if record is None:
                    raise NotFound("Room not found")

                working = record.copy()
                actions = transition(working)
                if actions is None:
                    return None, []

                try:
                    saved = await self.store.save(working, expected_version=record.version)
                except ConcurrencyError as e:
                    logger.warning(f"Conflict on room {room_id} (attempt {attempt}/{MAX_ATTEMPTS}): {e}")
                    continue

                # Log order and the pending timer must follow commit order
                logged = await self._append_actions(saved, actions)
                if self.timer is not None:
                    self.timer.schedule(saved)

            await self._notify_committed(saved, logged)
            return saved, actions

        raise InvalidState("The room changed too quickly, please try again")

    async def _append_actions(self, saved: GameRecord, actions: list[GameAction]) -> list[GameAction]:
        """Append actions to the room's log; returns the ones that were written."""
        room_id = saved.room.id
        logged = []
        for action in actions:
            try:
                await self.action_log.append(room_id, action)
            except Exception as e:
                logger.error(f"Failed to log {action.action_type.value} for room {room_id}: {e}")
                continue
            logged.append(action)
        return logged

    async def _notify_committed(self, saved: GameRecord, logged: list[GameAction]) -> None:
        room_id = saved.room.id

        for action in logged:
            await self._publish(PubSubMessage(
                type=MessageType.ACTION_APPENDED,
                room_id=room_id,
                data={"action": action.to_dict()},
            ))

        await self._publish(PubSubMessage(
            type=MessageType.STATE_CHANGED,
            room_id=room_id,
            data={"version": saved.version},
        ))

    async def _publish(self, message: PubSubMessage) -> None:
        try:
            await self.pubsub.publish(message)
        except Exception as e:
            logger.error(f"Failed to publish {message.type.value} for room {message.room_id}: {e}")

    async def _run(self, operation: str, room_id: str, call) -> ActionResult:
        """Convert domain errors and unexpected failures into results."""
        try:
            return await call()
        except GameError as e:
            logger.info(f"{operation} rejected in room {room_id}: {e.message}")
            return ActionResult.failure(e)
        except Exception:
            logger.exception(f"Unexpected error during {operation} in room {room_id}")
            return ActionResult.internal_error()

    # -------------------------------------------------------------------------
    # Game lifecycle
    # -------------------------------------------------------------------------

    async def start_game(self, room_id: str, caller_id: str) -> ActionResult:
        """Deal and start the game (host only)."""

        async def call() -> ActionResult:
            saved, _ = await self._commit(
                room_id,
                lambda working: engine.start_game(working, caller_id, self.rng),
            )
            return ActionResult(success=True, version=saved.version)

        with log_context(player_id=caller_id, room_id=room_id):
            return await self._run("start_game", room_id, call)

    async def end_memorizing(self, room_id: str, caller_id: Optional[str] = None) -> ActionResult:
        """
        End the memorizing phase.

        With a caller (the host) this is a request that must be valid. Without
        one it comes from the timer and quietly does nothing if the phase is
        already over.
        """

        def transition(working: GameRecord) -> Optional[list[GameAction]]:
            if caller_id is None and (
                working.state is None or working.state.phase != GamePhase.MEMORIZING
            ):
                return None
            return engine.end_memorizing(working, caller_id)

        async def call() -> ActionResult:
            saved, _ = await self._commit(room_id, transition)
            if saved is None:
                return ActionResult(success=False)
            return ActionResult(success=True, version=saved.version)

        with log_context(player_id=caller_id, room_id=room_id):
            return await self._run("end_memorizing", room_id, call)

    async def expire_turn(
        self,
        room_id: str,
        expected_turn: Optional[str],
        expected_started_at: Optional[datetime],
    ) -> ActionResult:
        """
        Time out the current turn if it is still the one the timer was set for.

        A no-op (success False, no code) when the turn has already moved on.
        """

        def transition(working: GameRecord) -> Optional[list[GameAction]]:
            room = working.room
            if room.current_turn != expected_turn or room.turn_started_at != expected_started_at:
                return None
            return engine.expire_turn(working)

        async def call() -> ActionResult:
            saved, _ = await self._commit(room_id, transition)
            if saved is None:
                return ActionResult(success=False)
            return ActionResult(success=True, version=saved.version)

        with log_context(room_id=room_id):
            return await self._run("expire_turn", room_id, call)

    # -------------------------------------------------------------------------
    # Turn actions
    # -------------------------------------------------------------------------

    async def submit_action(
        self,
        caller_id: Optional[str],
        request: Union[ActionRequest, dict],
    ) -> ActionResult:
        """
        Apply a draw, swap, discard or Dutch call for the caller.

        Args:
            caller_id: Verified identity of the caller.
            request: ActionRequest or its raw dict form.

        Returns:
            ActionResult; drawn_card is set only for the drawer's successful draw.
        """
        if not caller_id:
            return ActionResult.failure(Unauthorized("Authentication required"))

        if not isinstance(request, ActionRequest):
            try:
                request = ActionRequest.model_validate(request)
            except RequestValidationError as e:
                return ActionResult.failure(
                    ValidationError("Invalid action request", {"errors": _request_errors(e)})
                )

        room_id = request.room_id
        key = (room_id, caller_id)
        if key in self._in_flight:
            return ActionResult.failure(
                InvalidState("Your previous action is still being processed")
            )

        async def call() -> ActionResult:
            saved, _ = await self._commit(
                room_id,
                lambda working: engine.apply_action(
                    working,
                    caller_id,
                    request.action,
                    source=request.source,
                    hand_index=request.hand_index,
                ),
            )
            result = ActionResult(success=True, version=saved.version)
            if request.action == "draw":
                held = saved.state.held_by(caller_id)
                if held is not None:
                    result.drawn_card = held.card.to_dict()
            return result

        self._in_flight.add(key)
        try:
            with log_context(player_id=caller_id, room_id=room_id):
                return await self._run(request.action, room_id, call)
        finally:
            self._in_flight.discard(key)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _load_for_member(self, caller_id: Optional[str], room_id: str) -> GameRecord:
        record = await self.store.get(room_id)
        if record is None:
            raise NotFound("Room not found")
        require_member(record.room, caller_id)
        return record

    async def get_state(self, caller_id: Optional[str], room_id: str) -> StateResult:
        """Get the caller's redacted view of a room (members only)."""
        try:
            record = await self._load_for_member(caller_id, room_id)
            return StateResult(success=True, state=project_for(caller_id, record).to_dict())
        except GameError as e:
            return StateResult.failure(e)
        except Exception:
            logger.exception(f"Unexpected error loading state for room {room_id}")
            return StateResult(success=False, error=INTERNAL_ERROR_MESSAGE, code=INTERNAL_ERROR)

    async def recent_actions(
        self,
        caller_id: Optional[str],
        room_id: str,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Get the most recent public action entries, oldest first (members only).

        Raises:
            GameError: Room missing or caller not a member.
        """
        if limit is not None and (not isinstance(limit, int) or limit < 1):
            raise ValidationError("limit must be a positive integer")
        await self._load_for_member(caller_id, room_id)
        try:
            actions = await self.action_log.recent(room_id, limit)
        except Exception as e:
            logger.error(f"Failed to read action log for room {room_id}: {e}")
            return []
        return [action.to_dict() for action in actions]

    # -------------------------------------------------------------------------
    # Room teardown
    # -------------------------------------------------------------------------

    async def delete_room(self, room_id: str, caller_id: str) -> ActionResult:
        """Delete a room, its state and its log (host only)."""

        async def call() -> ActionResult:
            await self.rooms.delete_room(room_id, caller_id)
            if self.timer is not None:
                self.timer.forget(room_id)
            return ActionResult(success=True)

        with log_context(player_id=caller_id, room_id=room_id):
            return await self._run("delete_room", room_id, call)

    async def sweep_expired_rooms(self) -> list[str]:
        """
        Delete every room left untouched past the store's TTL.

        Returns:
            IDs of the rooms that were deleted.
        """
        swept = []
        for room_id in await self.store.expired_room_ids():
            try:
                if not await self.rooms.expire_room(room_id):
                    continue
            except Exception as e:
                logger.error(f"Failed to expire room {room_id}: {e}")
                continue
            if self.timer is not None:
                self.timer.forget(room_id)
            swept.append(room_id)

        if swept:
            logger.info(f"Swept {len(swept)} expired rooms")
        return swept
