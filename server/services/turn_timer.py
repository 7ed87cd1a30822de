"""
Server-side turn timers.

One asyncio task per room:

- memorizing: ends the phase MEMORIZE_SECONDS after the game started
- playing / dutch_round: expires the current turn TURN_TIMEOUT_SECONDS after
  it started (held card auto-discarded, turn advanced)

The game service calls schedule() after every committed write, so the task
always matches the latest record. Finished or deleted rooms have no task.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from config import config
from game import GamePhase
from room import GameRecord, RoomStatus
from turn_guard import ACTIVE_PHASES

if TYPE_CHECKING:
    from services.game_service import GameService

logger = logging.getLogger(__name__)


class TurnTimer:
    """Schedules memorize-phase and turn-timeout callbacks per room."""

    def __init__(
        self,
        service: "GameService",
        memorize_seconds: Optional[float] = None,
        turn_timeout_seconds: Optional[float] = None,
    ):
        self.service = service
        self.memorize_seconds = (
            config.MEMORIZE_SECONDS if memorize_seconds is None else memorize_seconds
        )
        self.turn_timeout_seconds = (
            config.TURN_TIMEOUT_SECONDS if turn_timeout_seconds is None else turn_timeout_seconds
        )
        self._tasks: dict[str, asyncio.Task] = {}
        self._versions: dict[str, int] = {}

    def is_scheduled(self, room_id: str) -> bool:
        return room_id in self._tasks

    def _delay_until(self, started_at: Optional[datetime], seconds: float) -> float:
        started_at = started_at or datetime.now(timezone.utc)
        deadline = started_at + timedelta(seconds=seconds)
        return max(0.0, (deadline - datetime.now(timezone.utc)).total_seconds())

    def schedule(self, record: GameRecord) -> None:
        """
        Replace the room's pending callback to match record.

        A record older than the last one scheduled for the room is ignored.
        """
        room, state = record.room, record.state
        if record.version < self._versions.get(room.id, 0):
            logger.debug(f"Ignoring stale schedule for room {room.id} (v{record.version})")
            return
        self._versions[room.id] = record.version
        self.cancel(room.id)

        if room.status != RoomStatus.PLAYING or state is None:
            return

        if state.phase == GamePhase.MEMORIZING:
            delay = self._delay_until(room.turn_started_at, self.memorize_seconds)
            self._start(room.id, delay, lambda: self.service.end_memorizing(room.id))
        elif state.phase in ACTIVE_PHASES and self.turn_timeout_seconds > 0:
            turn, started_at = room.current_turn, room.turn_started_at
            delay = self._delay_until(started_at, self.turn_timeout_seconds)
            self._start(room.id, delay, lambda: self.service.expire_turn(room.id, turn, started_at))

    def _start(self, room_id: str, delay: float, callback: Callable[[], Awaitable]) -> None:
        self._tasks[room_id] = asyncio.create_task(self._fire(room_id, delay, callback))

    async def _fire(self, room_id: str, delay: float, callback: Callable[[], Awaitable]) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return

        # The callback commits and reschedules; this task must not cancel itself
        if self._tasks.get(room_id) is asyncio.current_task():
            del self._tasks[room_id]

        try:
            await callback()
        except Exception as e:
            logger.error(f"Timer callback failed for room {room_id}: {e}", exc_info=True)

    def cancel(self, room_id: str) -> None:
        """Cancel the room's pending callback, if any."""
        task = self._tasks.pop(room_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def forget(self, room_id: str) -> None:
        """Cancel the room's callback and drop its bookkeeping (room deleted)."""
        self.cancel(room_id)
        self._versions.pop(room_id, None)

    async def stop(self) -> None:
        """Cancel every pending callback."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._versions.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("TurnTimer stopped")
