"""
Authorization and turn checks for player actions.

The guard answers one question: may this player perform this action on this
record right now? It reads only; it never mutates. The game service runs it
against the record loaded under the room lock, and the subsequent write is
conditional on that record's version, so check and act are one atomic step.
"""

from typing import Optional

from errors import InvalidState, NotFound, Unauthorized, ValidationError
from game import GamePhase, GameState
from room import Room, RoomStatus

ACTIVE_PHASES = (GamePhase.PLAYING, GamePhase.DUTCH_ROUND)


def require_member(room: Room, player_id: Optional[str]) -> None:
    """Raise Unauthorized unless player_id is seated in the room."""
    if not room.is_member(player_id):
        raise Unauthorized("You are not a member of this room")


def _player_name(room: Room, player_id: Optional[str]) -> str:
    player = room.get_player(player_id) if player_id else None
    return player.name if player else "another player"


def check_action(
    room: Room,
    state: Optional[GameState],
    player_id: str,
    action: str,
) -> GameState:
    """
    Validate a turn action, in order: membership, room status, state exists,
    whose turn it is, game phase, then per-action preconditions.

    Args:
        room: The room as loaded.
        state: The room's game state (None before a game starts).
        player_id: Verified identity of the acting player.
        action: One of "draw", "swap", "discard", "dutch".

    Returns:
        The game state, for the caller's convenience.

    Raises:
        Unauthorized: Not a member, or not this player's turn.
        InvalidState: Wrong room status, wrong phase, or held-card/Dutch
            preconditions not met.
        NotFound: No game state for the room.
    """
    require_member(room, player_id)

    if room.status != RoomStatus.PLAYING:
        raise InvalidState("Game is not in progress", {"status": room.status.value})

    if state is None:
        raise NotFound("Game state not found")

    if room.current_turn != player_id:
        raise Unauthorized(
            f"Not your turn: it is {_player_name(room, room.current_turn)}'s turn",
            {"current_turn": room.current_turn},
        )

    if state.phase not in ACTIVE_PHASES:
        raise InvalidState(
            f"Cannot act during the {state.phase.value} phase",
            {"phase": state.phase.value},
        )

    held = state.held_by(player_id)

    if action == "draw":
        if held is not None:
            raise InvalidState("You already drew a card this turn")
    elif action in ("swap", "discard"):
        if held is None:
            raise InvalidState("Draw a card first")
    elif action == "dutch":
        if room.dutch_caller is not None:
            raise InvalidState(
                f"Dutch was already called by {_player_name(room, room.dutch_caller)}"
            )
        if state.phase != GamePhase.PLAYING:
            raise InvalidState("Dutch can only be called during normal play")
        if held is not None:
            raise InvalidState("Cannot call Dutch while holding a drawn card")
    else:
        raise ValidationError(f"Unknown action: {action}")

    return state
