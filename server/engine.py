"""
Action processor for Dutch.

Every function here takes a *working copy* of a GameRecord (see
GameRecord.copy()), applies one transition to it, and returns the public
GameAction entries describing what happened. On any GameError the working
copy is simply discarded by the caller, so nothing is ever partially applied.

Per-turn flow:
    idle -> draw -> (swap | discard) -> turn advanced
    idle -> call Dutch -> turn advanced

Once Dutch has been called, the game ends when play would come back around
to the caller.
"""

import logging
import random
from datetime import datetime, timezone
from typing import Optional

from config import config
from constants import (
    HAND_SIZE,
    PILE_DECK,
    PILE_DISCARD,
    PILE_SOURCES,
    TIE_BREAK_CALLER_LOSES,
    TIE_BREAK_RULES,
    TIE_BREAK_SHARED,
)
from errors import InvalidState, ResourceExhausted, Unauthorized, ValidationError
from game import GamePhase, HeldCard, create_deck, deal_initial_hands, score_hand
from models.actions import ActionType, GameAction
from room import GameRecord, RoomStatus
from turn_guard import ACTIVE_PHASES, check_action

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _record_action(record: GameRecord, action: GameAction) -> GameAction:
    """Remember action as the state's last_action (sequence is assigned by the log)."""
    entry = action.to_dict()
    entry.pop("sequence_num", None)
    record.state.last_action = entry
    return action


# =============================================================================
# Game lifecycle
# =============================================================================


def start_game(
    record: GameRecord,
    caller_id: str,
    rng: Optional[random.Random] = None,
) -> list[GameAction]:
    """
    Deal a new game and move the room from waiting to playing.

    Only the host may start, every other seated player must be ready, and
    the first seated player takes the first turn.
    """
    room = record.room
    if room.host_id != caller_id:
        raise Unauthorized("Only the host can start the game")
    if room.status != RoomStatus.WAITING:
        raise InvalidState("Game already started", {"status": room.status.value})
    if record.state is not None:
        raise InvalidState("Game already started")

    not_ready = [p.name for p in room.players if p.player_id != room.host_id and not p.is_ready]
    if not_ready:
        raise InvalidState(
            f"Waiting for players to be ready: {', '.join(not_ready)}",
            {"not_ready": not_ready},
        )

    order = room.player_ids
    record.state = deal_initial_hands(create_deck(rng), order)

    room.status = RoomStatus.PLAYING
    room.current_turn = order[0]
    room.turn_started_at = _now()
    room.dutch_caller = None
    room.idle_turns = 0

    logger.info(f"Game started in room {room.code} with {len(order)} players")
    action = GameAction(
        action_type=ActionType.GAME_STARTED,
        player_id=caller_id,
        data={"player_order": order},
    )
    return [_record_action(record, action)]


def end_memorizing(record: GameRecord, caller_id: Optional[str] = None) -> list[GameAction]:
    """
    Close the memorizing phase and start normal play.

    Called by the host, or by the server timer (caller_id None). Every
    revealed set is cleared and the first player's turn clock restarts.
    """
    room, state = record.room, record.state
    if caller_id is not None and room.host_id != caller_id:
        raise Unauthorized("Only the host can end the memorizing phase")
    if room.status != RoomStatus.PLAYING or state is None:
        raise InvalidState("Game is not in progress")
    if state.phase != GamePhase.MEMORIZING:
        raise InvalidState(
            "Memorizing phase is already over",
            {"phase": state.phase.value},
        )

    state.advance_phase(GamePhase.PLAYING)
    state.revealed_cards = {pid: [] for pid in state.player_hands}
    room.turn_started_at = _now()

    action = GameAction(action_type=ActionType.MEMORIZING_ENDED, player_id=caller_id)
    return [_record_action(record, action)]


def determine_winners(
    scores: dict[str, int],
    dutch_caller: Optional[str] = None,
    rule: str = TIE_BREAK_SHARED,
) -> list[str]:
    """
    Pick the winner(s): lowest score wins.

    Rules:
        shared: everyone tied on the lowest score wins.
        caller_loses_ties: as shared, but a Dutch caller tied with others
            for lowest is dropped from the winners.
    """
    if rule not in TIE_BREAK_RULES:
        raise ValidationError(f"Unknown tie-break rule: {rule}")
    if not scores:
        return []

    lowest = min(scores.values())
    winners = [pid for pid, score in scores.items() if score == lowest]
    if rule == TIE_BREAK_CALLER_LOSES and dutch_caller in winners and len(winners) > 1:
        winners.remove(dutch_caller)
    return winners


def finish_game(record: GameRecord, abandoned: bool = False) -> GameAction:
    """
    Score every hand and close the game.

    abandoned marks a game closed because nobody played for too long.
    """
    room, state = record.room, record.state

    state.scores = {pid: score_hand(state.hand(pid)) for pid in room.player_ids}
    state.winners = determine_winners(state.scores, room.dutch_caller, config.TIE_BREAK)
    state.advance_phase(GamePhase.FINISHED)
    state.revealed_cards = {pid: [] for pid in state.player_hands}
    state.held = None

    room.status = RoomStatus.FINISHED
    room.current_turn = None
    room.turn_started_at = None

    logger.info(f"Game finished in room {room.code}: winners {state.winners}")
    data = {
        "scores": dict(state.scores),
        "winners": list(state.winners),
        "dutch_caller": room.dutch_caller,
    }
    if abandoned:
        data["abandoned"] = True
    action = GameAction(action_type=ActionType.GAME_FINISHED, data=data)
    return _record_action(record, action)


def advance_turn(record: GameRecord) -> Optional[GameAction]:
    """
    Pass the turn to the next seated player.

    If Dutch has been called and the next player would be the caller, the
    game finishes instead.

    Returns:
        The game_finished action if the game ended, else None.
    """
    room = record.room
    order = room.player_ids
    if room.current_turn not in order:
        raise InvalidState("Current player is not seated in the room")

    next_player = order[(order.index(room.current_turn) + 1) % len(order)]

    if room.dutch_caller is not None and next_player == room.dutch_caller:
        return finish_game(record)

    room.current_turn = next_player
    room.turn_started_at = _now()
    return None


def _after_turn(record: GameRecord, action: GameAction) -> list[GameAction]:
    actions = [_record_action(record, action)]
    finished = advance_turn(record)
    if finished is not None:
        actions.append(finished)
    return actions


# =============================================================================
# Turn actions
# =============================================================================


def draw(record: GameRecord, player_id: str, source: str) -> list[GameAction]:
    """
    Take the top card of the deck or the discard pile into the held slot.

    A card drawn from the discard pile was face-up, so it is part of the
    public entry; a card drawn from the deck is not.
    """
    state = record.state
    if source not in PILE_SOURCES:
        raise ValidationError(f"Unknown pile: {source}")

    pile = state.deck if source == PILE_DECK else state.discard_pile
    if not pile:
        raise ResourceExhausted(f"The {source} pile is empty", {"source": source})

    card = pile.pop()
    state.held = HeldCard(player_id=player_id, card=card, source=source)
    logger.debug(f"Player {player_id} drew {card} from {source}")

    data = {"source": source}
    if source == PILE_DISCARD:
        data["card"] = card.to_dict()
    action = GameAction(action_type=ActionType.DRAW, player_id=player_id, data=data)
    return [_record_action(record, action)]


def swap(record: GameRecord, player_id: str, hand_index: int) -> list[GameAction]:
    """
    Replace hand[hand_index] with the held card.

    The displaced card goes face-up onto the discard pile, then the turn
    advances.
    """
    state = record.state
    is_int = isinstance(hand_index, int) and not isinstance(hand_index, bool)
    if not is_int or not 0 <= hand_index < HAND_SIZE:
        raise ValidationError(
            f"hand_index must be between 0 and {HAND_SIZE - 1}",
            {"hand_index": hand_index},
        )

    held = state.held_by(player_id)
    if held is None:
        raise InvalidState("Draw a card first")

    hand = state.player_hands[player_id]
    displaced = hand[hand_index]
    hand[hand_index] = held.card
    state.discard_pile.append(displaced)
    state.held = None

    action = GameAction(
        action_type=ActionType.SWAP,
        player_id=player_id,
        data={
            "hand_index": hand_index,
            "source": held.source,
            "discarded": displaced.to_dict(),
        },
    )
    return _after_turn(record, action)


def discard(record: GameRecord, player_id: str) -> list[GameAction]:
    """Put the held card face-up on the discard pile, then advance the turn."""
    state = record.state
    held = state.held_by(player_id)
    if held is None:
        raise InvalidState("Draw a card first")

    state.discard_pile.append(held.card)
    state.held = None

    action = GameAction(
        action_type=ActionType.DISCARD,
        player_id=player_id,
        data={"source": held.source, "card": held.card.to_dict()},
    )
    return _after_turn(record, action)


def call_dutch(record: GameRecord, player_id: str) -> list[GameAction]:
    """
    Call Dutch: every other player gets one more turn, then the game ends.

    Calling Dutch uses up the caller's turn.
    """
    room, state = record.room, record.state
    room.dutch_caller = player_id
    state.advance_phase(GamePhase.DUTCH_ROUND)

    logger.info(f"Player {player_id} called Dutch in room {room.code}")
    action = GameAction(action_type=ActionType.DUTCH, player_id=player_id)
    return _after_turn(record, action)


def expire_turn(record: GameRecord) -> list[GameAction]:
    """
    Time out the current player's turn.

    A held card is discarded exactly as a discard action would, then the
    turn advances. After IDLE_ROUNDS_LIMIT full rounds of timeouts with no
    player action the game is finished as abandoned.
    """
    room, state = record.room, record.state
    if room.status != RoomStatus.PLAYING or state is None:
        raise InvalidState("Game is not in progress")
    if state.phase not in ACTIVE_PHASES:
        raise InvalidState("No turn to expire", {"phase": state.phase.value})

    player_id = room.current_turn
    data: dict = {"discarded": None}
    held = state.held_by(player_id) if player_id else None
    if held is not None:
        state.discard_pile.append(held.card)
        state.held = None
        data = {"discarded": held.card.to_dict(), "source": held.source}

    room.idle_turns += 1
    logger.info(f"Turn of {player_id} timed out in room {room.code}")
    action = GameAction(action_type=ActionType.TIMEOUT, player_id=player_id, data=data)

    limit = config.IDLE_ROUNDS_LIMIT
    if limit > 0 and room.idle_turns >= limit * len(room.players):
        logger.info(f"Room {room.code} abandoned after {room.idle_turns} idle turns")
        return [_record_action(record, action), finish_game(record, abandoned=True)]
    return _after_turn(record, action)


def apply_action(
    record: GameRecord,
    player_id: str,
    action: str,
    source: Optional[str] = None,
    hand_index: Optional[int] = None,
) -> list[GameAction]:
    """
    Guard and apply one turn action to a working copy.

    Raises:
        GameError: The action is not allowed; the working copy must be discarded.
    """
    check_action(record.room, record.state, player_id, action)
    record.room.idle_turns = 0

    if action == "draw":
        return draw(record, player_id, source)
    if action == "swap":
        return swap(record, player_id, hand_index)
    if action == "discard":
        return discard(record, player_id)
    return call_dutch(record, player_id)
